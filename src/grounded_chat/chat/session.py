"""Multi-turn chat session with deterministic query augmentation."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from grounded_chat.client.base import ChatTransport, ModelClient
from grounded_chat.config import DEFAULT_QUERY_TEMPLATE
from grounded_chat.types import (
    ModelHandle,
    ModelResponse,
    Part,
    TextPart,
    ToolInvocationResult,
    Turn,
)


def augment_query(user_text: str, template: str = DEFAULT_QUERY_TEMPLATE) -> str:
    """Wrap raw user input into the grounding instruction template."""
    return template.format(input=user_text)


class ChatSession:
    """Ordered, append-only conversation bound to one model handle.

    History is owned by the client's transport, which appends the user and
    model turns only after a successful send. The session never appends to it
    itself, so a failed send leaves history untouched.
    """

    def __init__(
        self,
        client: ModelClient,
        handle: ModelHandle,
        *,
        template: str = DEFAULT_QUERY_TEMPLATE,
    ) -> None:
        self.client = client
        self.handle = handle
        self.template = template
        self._seed: tuple[Turn, ...] | None = None
        self._transport: ChatTransport | None = None
        self._writer = threading.Lock()

    @property
    def started(self) -> bool:
        return self._transport is not None

    @property
    def history(self) -> tuple[Turn, ...]:
        if self._transport is None:
            return self._seed or ()
        return tuple(self._transport.history)

    def seed(self, history: Sequence[Turn]) -> None:
        if self._seed is not None:
            raise RuntimeError("Chat session history has already been seeded.")
        if self._transport is not None:
            raise RuntimeError("Cannot seed a chat session after the first send.")
        self._seed = tuple(history)

    def send(self, user_text: str) -> ModelResponse:
        return self.send_parts([TextPart(augment_query(user_text, self.template))])

    def send_tool_results(self, results: Sequence[ToolInvocationResult]) -> ModelResponse:
        """Send a continuation turn carrying one result part per tool call."""
        if not results:
            raise ValueError("At least one tool result is required.")
        return self.send_parts([result.as_part() for result in results])

    def restore(self, history: Sequence[Turn]) -> None:
        """Restart the conversation from an earlier ``history`` snapshot.

        Used to drop a partially recorded turn; the transport is recreated
        because it owns history and offers no way to truncate it.
        """
        snapshot = tuple(history)
        if snapshot == self.history:
            return
        with self._single_writer():
            self._transport = self.client.start_session(self.handle, snapshot)

    def send_parts(self, parts: Sequence[Part]) -> ModelResponse:
        with self._single_writer():
            if self._transport is None:
                self._transport = self.client.start_session(self.handle, self._seed or ())
            return self.client.send_turn(self._transport, parts)

    @contextmanager
    def _single_writer(self) -> Iterator[None]:
        if not self._writer.acquire(blocking=False):
            raise RuntimeError("Another turn is already in flight on this session.")
        try:
            yield
        finally:
            self._writer.release()
