"""Ownership of the uploaded document and the context cache built from it."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

from grounded_chat.client.base import ModelClient
from grounded_chat.errors import ReleaseError
from grounded_chat.types import CachedContext, FilePart, ModelHandle, UploadedDocument

logger = logging.getLogger(__name__)


class ResourceLifecycleManager:
    """Acquires remote resources in order and releases them in reverse order.

    Use as a context manager so ``release()`` runs on every exit path::

        with ResourceLifecycleManager(client) as resources:
            doc = resources.acquire_document_if_present("book.pdf")
            resources.acquire_cache_if_applicable(doc, model, instruction)
            handle = resources.select_model(fallback_model)

    ``release()`` is guarded so the remote deletes happen at most once, even
    when normal completion and a shutdown signal both trigger it.
    """

    def __init__(self, client: ModelClient) -> None:
        self._client = client
        self._document: UploadedDocument | None = None
        self._cache: CachedContext | None = None
        self._release_lock = threading.Lock()
        self._released = False
        self.release_errors: list[ReleaseError] = []

    def __enter__(self) -> "ResourceLifecycleManager":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.release()

    @property
    def document(self) -> UploadedDocument | None:
        return self._document

    @property
    def cache(self) -> CachedContext | None:
        return self._cache

    @property
    def released(self) -> bool:
        return self._released

    def acquire_document_if_present(self, path: str | Path) -> UploadedDocument | None:
        """Upload ``path`` if it exists; a missing file is not an error."""
        self._ensure_open()
        if self._document is not None:
            raise RuntimeError("A grounding document has already been acquired.")
        source = Path(path)
        if not source.exists():
            logger.info("Grounding document %s not found; continuing without it", source)
            return None
        self._document = self._client.upload_document(source)
        return self._document

    def acquire_cache_if_applicable(
        self,
        doc: UploadedDocument | None,
        model: str,
        system_instruction: str,
        *,
        ttl: timedelta | None = None,
        tools: Sequence[dict[str, Any]] = (),
    ) -> CachedContext | None:
        """Create the context cache for ``doc``.

        Creation failures propagate unchanged; the document is released by
        the surrounding ``with`` block.
        """
        self._ensure_open()
        if doc is None:
            return None
        if self._cache is not None:
            raise RuntimeError("A context cache has already been created.")
        self._cache = self._client.create_cached_context(
            model,
            system_instruction,
            [FilePart(uri=doc.uri, mime_type=doc.mime_type)],
            ttl=ttl,
            tools=tools,
        )
        logger.info("Created context cache %s for %s", self._cache.name, doc.name)
        return self._cache

    def select_model(
        self,
        name: str,
        *,
        system_instruction: str | None = None,
        tools: Sequence[dict[str, Any]] = (),
    ) -> ModelHandle:
        if self._cache is not None:
            logger.info("Using model with cached content %s", self._cache.name)
            return self._client.model_from_cache(self._cache)
        logger.info("Using model %s without cached content", name)
        return self._client.model_by_name(name, system_instruction=system_instruction, tools=tools)

    def release(self) -> None:
        """Delete the cache, then the document; failures are logged, never raised."""
        with self._release_lock:
            if self._released:
                return
            self._released = True
            cache, self._cache = self._cache, None
            document, self._document = self._document, None

            try:
                if cache is not None:
                    self._delete("cache", cache.name, self._client.delete_cached_context)
            finally:
                # An interrupt during the cache delete must not orphan the document.
                if document is not None:
                    self._delete("document", document.name, self._client.delete_document)

    def _delete(self, resource: str, name: str, delete: Any) -> None:
        try:
            delete(name)
        except Exception as exc:
            error = ReleaseError(resource, name, exc)
            self.release_errors.append(error)
            logger.warning("%s", error)
        else:
            logger.info("Deleted %s %s", resource, name)

    def _ensure_open(self) -> None:
        if self._released:
            raise RuntimeError("Resources have already been released.")
