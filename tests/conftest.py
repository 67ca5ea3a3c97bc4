from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from grounded_chat.types import (
    CachedContext,
    Candidate,
    ModelHandle,
    ModelResponse,
    Part,
    TextPart,
    ToolCallPart,
    Turn,
    UploadedDocument,
)

Responder = Callable[[Sequence[Part]], ModelResponse]


def text_response(*texts: str) -> ModelResponse:
    return ModelResponse(candidates=[Candidate(parts=[TextPart(t) for t in texts])])


def tool_call_response(name: str, **args: Any) -> ModelResponse:
    return ModelResponse(candidates=[Candidate(parts=[ToolCallPart(name=name, args=args, call_id="call-1")])])


class FakeTransport:
    """Records history only for sends that succeed, like the real SDK chat."""

    def __init__(self, client: "FakeModelClient", handle: ModelHandle, seed: Sequence[Turn]) -> None:
        self.client = client
        self.handle = handle
        self._history = list(seed)

    @property
    def history(self) -> list[Turn]:
        return list(self._history)

    def send(self, parts: Sequence[Part]) -> ModelResponse:
        self.client.sent.append(list(parts))
        response = self.client.next_response(parts)
        self._history.append(Turn(role="user", parts=tuple(parts)))
        candidate = response.first_candidate
        self._history.append(Turn(role="model", parts=tuple(candidate.parts if candidate else ())))
        return response


class FakeModelClient:
    """In-memory model client that logs every remote operation in ``calls``."""

    def __init__(self, responses: Sequence[ModelResponse | Exception] = ()) -> None:
        self.calls: list[tuple[str, str]] = []
        self.sent: list[list[Part]] = []
        self.responses = list(responses)
        self.sessions: list[FakeTransport] = []
        self.fail_upload: Exception | None = None
        self.fail_cache: Exception | None = None
        self.fail_delete: dict[str, BaseException] = {}
        self.closed = False

    def next_response(self, parts: Sequence[Part]) -> ModelResponse:
        if not self.responses:
            return text_response("ok")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def upload_document(self, path: str | Path) -> UploadedDocument:
        self.calls.append(("upload_document", str(path)))
        if self.fail_upload is not None:
            raise self.fail_upload
        return UploadedDocument(
            name="files/doc-1",
            source_path=str(path),
            uri="https://files.example/doc-1",
            mime_type="application/pdf",
            uploaded_at=datetime.now(timezone.utc),
        )

    def delete_document(self, name: str) -> None:
        self.calls.append(("delete_document", name))
        if "document" in self.fail_delete:
            raise self.fail_delete["document"]

    def create_cached_context(self, model, system_instruction, parts, ttl=None, tools=()) -> CachedContext:
        self.calls.append(("create_cached_context", model))
        if self.fail_cache is not None:
            raise self.fail_cache
        self.cache_tools = list(tools)
        return CachedContext(
            name="cachedContents/cache-1",
            model=model,
            system_instruction=system_instruction,
            parts=tuple(parts),
            created_at=datetime.now(timezone.utc),
        )

    def delete_cached_context(self, name: str) -> None:
        self.calls.append(("delete_cached_context", name))
        if "cache" in self.fail_delete:
            raise self.fail_delete["cache"]

    def model_from_cache(self, cached: CachedContext) -> ModelHandle:
        return ModelHandle(model=cached.model, cached_context=cached)

    def model_by_name(self, name, system_instruction=None, tools=()) -> ModelHandle:
        return ModelHandle(model=name, system_instruction=system_instruction, tools=tuple(tools))

    def start_session(self, handle: ModelHandle, seed_history: Sequence[Turn]) -> FakeTransport:
        transport = FakeTransport(self, handle, seed_history)
        self.sessions.append(transport)
        return transport

    def send_turn(self, session: FakeTransport, parts: Sequence[Part]) -> ModelResponse:
        return session.send(parts)

    def close(self) -> None:
        self.closed = True

    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_client() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "GEMINI_API_KEY",
        "GROUNDED_CHAT_DOCUMENT",
        "GROUNDED_CHAT_MODEL",
        "GROUNDED_CHAT_FALLBACK_MODEL",
        "GROUNDED_CHAT_CACHE_TTL",
        "GROUNDED_CHAT_RESULTS_ROOT",
        "GROUNDED_CHAT_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
