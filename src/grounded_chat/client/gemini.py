"""Gemini implementation of the model client contract.

Translates between the assistant's data model and ``google.genai.types`` and
maps SDK failures onto the assistant's error taxonomy.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from grounded_chat.errors import (
    AssistantError,
    AuthError,
    CacheCreationError,
    ContentPolicyError,
    RateLimitError,
    TransportError,
    UploadError,
)
from grounded_chat.types import (
    CachedContext,
    Candidate,
    FilePart,
    ModelHandle,
    ModelResponse,
    Part,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Turn,
    UploadedDocument,
)

logger = logging.getLogger(__name__)

_BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
_UPLOAD_POLL_SECONDS = 2.0
_UPLOAD_MAX_WAIT_SECONDS = 120.0


class GeminiChatTransport:
    """Wraps a ``google.genai`` chat; the SDK records history on success only."""

    def __init__(self, chat: Any) -> None:
        self._chat = chat

    @property
    def history(self) -> list[Turn]:
        return [turn_from_content(content) for content in self._chat.get_history()]

    def send(self, parts: Sequence[Part]) -> ModelResponse:
        with _translate_errors(TransportError):
            response = self._chat.send_message([part_to_genai(part) for part in parts])
        return response_from_genai(response)


class GeminiModelClient:
    """Explicit client handle passed to every component that talks to Gemini."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def create(cls, api_key: str, *, timeout_seconds: float | None = None) -> "GeminiModelClient":
        http_options = None
        if timeout_seconds is not None:
            http_options = types.HttpOptions(timeout=int(timeout_seconds * 1000))
        try:
            client = genai.Client(api_key=api_key, http_options=http_options)
        except Exception as exc:
            raise AuthError(f"Failed to create Gemini client: {exc}") from exc
        return cls(client)

    def close(self) -> None:
        self._client.close()

    def upload_document(self, path: str | Path) -> UploadedDocument:
        source = Path(path)
        with _translate_errors(UploadError):
            uploaded = self._client.files.upload(file=source)
            uploaded = self._wait_until_active(uploaded)
        logger.info("Uploaded %s as %s", source, uploaded.name)
        return UploadedDocument(
            name=uploaded.name,
            source_path=str(source),
            uri=uploaded.uri,
            mime_type=uploaded.mime_type,
            uploaded_at=uploaded.create_time or datetime.now(timezone.utc),
        )

    def delete_document(self, name: str) -> None:
        with _translate_errors(TransportError):
            self._client.files.delete(name=name)

    def create_cached_context(
        self,
        model: str,
        system_instruction: str,
        parts: Sequence[Part],
        ttl: timedelta | None = None,
        tools: Sequence[dict[str, Any]] = (),
    ) -> CachedContext:
        config = types.CreateCachedContentConfig(
            contents=[types.Content(role="user", parts=[part_to_genai(p) for p in parts])],
            system_instruction=system_instruction,
            ttl=f"{int(ttl.total_seconds())}s" if ttl is not None else None,
            tools=_tools_to_genai(tools),
        )
        with _translate_errors(CacheCreationError):
            cached = self._client.caches.create(model=model, config=config)
        return CachedContext(
            name=cached.name,
            model=model,
            system_instruction=system_instruction,
            parts=tuple(parts),
            created_at=cached.create_time or datetime.now(timezone.utc),
            expires_at=cached.expire_time,
        )

    def delete_cached_context(self, name: str) -> None:
        with _translate_errors(TransportError):
            self._client.caches.delete(name=name)

    def model_from_cache(self, cached: CachedContext) -> ModelHandle:
        return ModelHandle(model=cached.model, cached_context=cached)

    def model_by_name(
        self,
        name: str,
        system_instruction: str | None = None,
        tools: Sequence[dict[str, Any]] = (),
    ) -> ModelHandle:
        return ModelHandle(model=name, system_instruction=system_instruction, tools=tuple(tools))

    def start_session(self, handle: ModelHandle, seed_history: Sequence[Turn]) -> GeminiChatTransport:
        if handle.cached_context is not None:
            config = types.GenerateContentConfig(cached_content=handle.cached_context.name)
        else:
            config = types.GenerateContentConfig(
                system_instruction=handle.system_instruction,
                tools=_tools_to_genai(handle.tools),
            )
        chat = self._client.chats.create(
            model=handle.model,
            config=config,
            history=[turn_to_content(turn) for turn in seed_history],
        )
        return GeminiChatTransport(chat)

    def send_turn(self, session: GeminiChatTransport, parts: Sequence[Part]) -> ModelResponse:
        return session.send(parts)

    def _wait_until_active(self, uploaded: Any) -> Any:
        deadline = time.monotonic() + _UPLOAD_MAX_WAIT_SECONDS
        while _state_name(uploaded.state) == "PROCESSING":
            if time.monotonic() > deadline:
                raise UploadError(f"Upload of {uploaded.name} did not finish processing")
            time.sleep(_UPLOAD_POLL_SECONDS)
            uploaded = self._client.files.get(name=uploaded.name)
        if _state_name(uploaded.state) == "FAILED":
            raise UploadError(f"Remote processing of {uploaded.name} failed")
        return uploaded


@contextmanager
def _translate_errors(default: type[AssistantError]) -> Iterator[None]:
    try:
        yield
    except AssistantError:
        raise
    except genai_errors.APIError as exc:
        if exc.code in (401, 403):
            raise AuthError(f"Gemini rejected the credential: {exc}") from exc
        if exc.code == 429:
            raise RateLimitError(f"Gemini rate limit reached: {exc}") from exc
        raise default(str(exc)) from exc
    except (httpx.HTTPError, OSError) as exc:
        raise default(f"{type(exc).__name__}: {exc}") from exc


def _state_name(state: Any) -> str | None:
    if state is None:
        return None
    return str(getattr(state, "name", state)).upper()


def _tools_to_genai(tools: Sequence[dict[str, Any]]) -> list[types.Tool] | None:
    if not tools:
        return None
    declarations = [
        types.FunctionDeclaration(
            name=tool["name"],
            description=tool.get("description"),
            parameters_json_schema=tool.get("parameters"),
        )
        for tool in tools
    ]
    return [types.Tool(function_declarations=declarations)]


def part_to_genai(part: Part) -> types.Part:
    if isinstance(part, TextPart):
        return types.Part.from_text(text=part.text)
    if isinstance(part, FilePart):
        return types.Part.from_uri(file_uri=part.uri, mime_type=part.mime_type)
    if isinstance(part, ToolCallPart):
        return types.Part(
            function_call=types.FunctionCall(name=part.name, args=part.args, id=part.call_id)
        )
    if isinstance(part, ToolResultPart):
        return types.Part(
            function_response=types.FunctionResponse(
                name=part.name, response=part.response, id=part.call_id
            )
        )
    raise TypeError(f"Unsupported part type: {type(part).__name__}")


def part_from_genai(part: types.Part) -> Part | None:
    if part.function_call is not None:
        call = part.function_call
        return ToolCallPart(name=call.name or "", args=dict(call.args or {}), call_id=call.id)
    if part.function_response is not None:
        resp = part.function_response
        return ToolResultPart(name=resp.name or "", response=dict(resp.response or {}), call_id=resp.id)
    if part.file_data is not None:
        return FilePart(uri=part.file_data.file_uri or "", mime_type=part.file_data.mime_type)
    if part.text is not None and not part.thought:
        return TextPart(part.text)
    return None


def turn_to_content(turn: Turn) -> types.Content:
    return types.Content(role=turn.role, parts=[part_to_genai(part) for part in turn.parts])


def turn_from_content(content: types.Content) -> Turn:
    parts = [converted for p in content.parts or [] if (converted := part_from_genai(p)) is not None]
    role = "model" if content.role == "model" else "user"
    return Turn(role=role, parts=tuple(parts))


def response_from_genai(response: types.GenerateContentResponse) -> ModelResponse:
    feedback = response.prompt_feedback
    if feedback is not None and feedback.block_reason is not None:
        raise ContentPolicyError(f"Prompt blocked: {_state_name(feedback.block_reason)}")

    candidates: list[Candidate] = []
    for candidate in response.candidates or []:
        finish_reason = _state_name(candidate.finish_reason)
        parts: list[Part] = []
        if candidate.content is not None:
            parts = [
                converted
                for p in candidate.content.parts or []
                if (converted := part_from_genai(p)) is not None
            ]
        candidates.append(Candidate(parts=parts, finish_reason=finish_reason))

    if candidates and not candidates[0].parts and candidates[0].finish_reason in _BLOCKED_FINISH_REASONS:
        raise ContentPolicyError(f"Response blocked: {candidates[0].finish_reason}")
    return ModelResponse(candidates=candidates)
