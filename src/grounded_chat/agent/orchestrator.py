"""Turn loop binding the chat session to the tool dispatcher."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from grounded_chat.agent.registry import ToolRegistry
from grounded_chat.chat.session import ChatSession
from grounded_chat.config import AgentConfig
from grounded_chat.errors import AssistantError
from grounded_chat.obs.tracing import Timer, TraceStore
from grounded_chat.types import (
    ModelResponse,
    ToolInvocationRequest,
    ToolInvocationResult,
    ToolTrace,
    Turn,
)

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response from the model."
TOOL_ROUND_LIMIT_ERROR = "tool round limit reached"


class OrchestratorState(enum.Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    SENDING = "sending"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    DISPLAYING_RESULT = "displaying_result"
    SHUTTING_DOWN = "shutting_down"


@dataclass(slots=True)
class TurnOutcome:
    """What one orchestrated turn produced for display."""

    question: str
    answer: str = ""
    success: bool = True
    error: str | None = None
    tool_results: list[ToolInvocationResult] = field(default_factory=list)
    truncated: bool = False


class TurnOrchestrator:
    """Runs one user input through the session, dispatching tool calls until the model answers."""

    def __init__(
        self,
        session: ChatSession,
        registry: ToolRegistry,
        *,
        config: AgentConfig | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.config = config or AgentConfig()
        self.trace_store = trace_store
        self.state = OrchestratorState.IDLE

    @property
    def busy(self) -> bool:
        return self.state in (OrchestratorState.SENDING, OrchestratorState.AWAITING_TOOL_RESULT)

    def shutdown(self) -> None:
        self.state = OrchestratorState.SHUTTING_DOWN

    def handle_input(self, line: str) -> TurnOutcome | None:
        """Run one turn; blank input returns ``None`` without contacting the model.

        Recoverable errors produce a failed outcome. Unrecoverable ones move
        the orchestrator to ``SHUTTING_DOWN`` and are re-raised.
        """
        if self.state is OrchestratorState.SHUTTING_DOWN:
            raise RuntimeError("Orchestrator is shutting down.")
        question = line.strip()
        if not question:
            return None

        observed_tools: list[ToolTrace] = []
        self.registry.set_observer(observed_tools.append)
        outcome = TurnOutcome(question=question)
        snapshot = self.session.history
        try:
            with Timer() as timer:
                try:
                    self._run_turn(outcome, snapshot)
                except AssistantError as exc:
                    if not exc.recoverable:
                        self.state = OrchestratorState.SHUTTING_DOWN
                        raise
                    logger.warning("Turn failed: %s", exc)
                    outcome.success = False
                    outcome.error = str(exc)
                    # A continuation may have failed after the first send was recorded.
                    self.session.restore(snapshot)
        finally:
            self.registry.set_observer(None)

        if self.trace_store is not None:
            self.trace_store.create_record(
                question=question,
                answer=outcome.answer,
                success=outcome.success,
                tool_traces=observed_tools,
                latency_ms=timer.elapsed_ms,
            )
        self.state = OrchestratorState.DISPLAYING_RESULT
        return outcome

    def run(
        self,
        lines: Iterable[str],
        display: Callable[[TurnOutcome], None],
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> int:
        """Feed input lines through ``handle_input`` until input ends or a stop is requested."""
        handled = 0
        self.state = OrchestratorState.AWAITING_INPUT
        for line in lines:
            if should_stop is not None and should_stop():
                break
            outcome = self.handle_input(line)
            if outcome is not None:
                display(outcome)
                handled += 1
            if should_stop is not None and should_stop():
                break
            self.state = OrchestratorState.AWAITING_INPUT
        self.shutdown()
        return handled

    def _run_turn(self, outcome: TurnOutcome, snapshot: tuple[Turn, ...]) -> None:
        self.state = OrchestratorState.SENDING
        response = self.session.send(outcome.question)

        rounds = 0
        while response.tool_calls():
            if rounds >= self.config.max_tool_rounds:
                logger.warning("Stopped after %d tool rounds", rounds)
                outcome.truncated = True
                response = self._refuse_tool_calls(response, snapshot)
                break
            rounds += 1
            response = self._dispatch_tool_calls(response, outcome)

        outcome.answer = response.text() or NO_RESPONSE_TEXT

    def _refuse_tool_calls(self, response: ModelResponse, snapshot: tuple[Turn, ...]) -> ModelResponse:
        # Every tool call in history must be followed by its result.
        results = [
            ToolInvocationResult(
                name=call.name, success=False, error=TOOL_ROUND_LIMIT_ERROR, call_id=call.call_id
            )
            for call in response.tool_calls()
        ]
        reply = self.session.send_tool_results(results)
        if reply.tool_calls():
            self.session.restore(snapshot)
        return reply

    def _dispatch_tool_calls(self, response: ModelResponse, outcome: TurnOutcome) -> ModelResponse:
        self.state = OrchestratorState.AWAITING_TOOL_RESULT
        results = [
            self.registry.dispatch(ToolInvocationRequest.from_part(call))
            for call in response.tool_calls()
        ]
        outcome.tool_results.extend(results)
        self.state = OrchestratorState.SENDING
        return self.session.send_tool_results(results)
