"""Capability contract the core expects from a remote model service."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol

from grounded_chat.types import (
    CachedContext,
    ModelHandle,
    ModelResponse,
    Part,
    Turn,
    UploadedDocument,
)


class ChatTransport(Protocol):
    """A live conversation held by the client.

    Implementations append the user turn and the model turn to ``history``
    only after a send succeeds.
    """

    @property
    def history(self) -> list[Turn]: ...

    def send(self, parts: Sequence[Part]) -> ModelResponse: ...


class ModelClient(Protocol):
    """Every method is a blocking remote call that may raise an ``AssistantError``."""

    def upload_document(self, path: str | Path) -> UploadedDocument: ...

    def delete_document(self, name: str) -> None: ...

    def create_cached_context(
        self,
        model: str,
        system_instruction: str,
        parts: Sequence[Part],
        ttl: timedelta | None = None,
        tools: Sequence[dict[str, Any]] = (),
    ) -> CachedContext: ...

    def delete_cached_context(self, name: str) -> None: ...

    def model_from_cache(self, cached: CachedContext) -> ModelHandle: ...

    def model_by_name(
        self,
        name: str,
        system_instruction: str | None = None,
        tools: Sequence[dict[str, Any]] = (),
    ) -> ModelHandle: ...

    def start_session(self, handle: ModelHandle, seed_history: Sequence[Turn]) -> ChatTransport: ...

    def send_turn(self, session: ChatTransport, parts: Sequence[Part]) -> ModelResponse: ...

    def close(self) -> None: ...
