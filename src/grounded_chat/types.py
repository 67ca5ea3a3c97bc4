"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

Role = Literal["user", "model"]


@dataclass(slots=True, frozen=True)
class TextPart:
    text: str


@dataclass(slots=True, frozen=True)
class FilePart:
    """Reference to a remotely uploaded file."""

    uri: str
    mime_type: str | None = None


@dataclass(slots=True, frozen=True)
class ToolCallPart:
    """A model-issued request to run a locally declared tool."""

    name: str
    args: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True, frozen=True)
class ToolResultPart:
    """A tool result fed back to the model."""

    name: str
    response: dict[str, Any]
    call_id: str | None = None


Part = Union[TextPart, FilePart, ToolCallPart, ToolResultPart]


@dataclass(slots=True, frozen=True)
class Turn:
    """One role-tagged unit of conversation content."""

    role: Role
    parts: tuple[Part, ...]

    @classmethod
    def of(cls, role: Role, *parts: Part | str) -> "Turn":
        return cls(
            role=role,
            parts=tuple(TextPart(p) if isinstance(p, str) else p for p in parts),
        )


@dataclass(slots=True)
class UploadedDocument:
    """A document uploaded to the remote service."""

    name: str
    source_path: str
    uri: str
    mime_type: str | None
    uploaded_at: datetime


@dataclass(slots=True)
class CachedContext:
    """Server-side cache holding the system instruction and priming content."""

    name: str
    model: str
    system_instruction: str
    parts: tuple[Part, ...]
    created_at: datetime
    expires_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class ModelHandle:
    """A conversational model bound to a cache or to a bare model name."""

    model: str
    cached_context: CachedContext | None = None
    system_instruction: str | None = None
    tools: tuple[dict[str, Any], ...] = ()

    def __post_init__(self) -> None:
        if self.cached_context is not None and (self.system_instruction or self.tools):
            raise ValueError(
                "A cache-bound model carries its instruction and tools in the cache."
            )

    @property
    def uses_cache(self) -> bool:
        return self.cached_context is not None


@dataclass(slots=True, frozen=True)
class ToolInvocationRequest:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None

    @classmethod
    def from_part(cls, part: ToolCallPart) -> "ToolInvocationRequest":
        return cls(name=part.name, arguments=dict(part.args), call_id=part.call_id)


@dataclass(slots=True, frozen=True)
class ToolInvocationResult:
    name: str
    success: bool
    payload: str | None = None
    error: str | None = None
    call_id: str | None = None

    def as_response(self) -> dict[str, Any]:
        if self.success:
            return {"result": self.payload}
        return {"error": self.error}

    def as_part(self) -> ToolResultPart:
        return ToolResultPart(name=self.name, response=self.as_response(), call_id=self.call_id)


@dataclass(slots=True)
class Candidate:
    parts: list[Part]
    finish_reason: str | None = None


@dataclass(slots=True)
class ModelResponse:
    """A model reply; only the first candidate is read by the orchestrator."""

    candidates: list[Candidate] = field(default_factory=list)

    @property
    def first_candidate(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None

    def text(self) -> str:
        """Concatenate every text part of the first candidate."""
        candidate = self.first_candidate
        if candidate is None:
            return ""
        texts = [part.text for part in candidate.parts if isinstance(part, TextPart)]
        return "\n".join(text for text in texts if text)

    def tool_calls(self) -> list[ToolCallPart]:
        candidate = self.first_candidate
        if candidate is None:
            return []
        return [part for part in candidate.parts if isinstance(part, ToolCallPart)]


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = True
