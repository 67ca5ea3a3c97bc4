"""Per-turn tracing and latency accounting."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from grounded_chat.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnRecord:
    trace_id: str
    timestamp_utc: str
    question: str
    answer: str
    success: bool
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_tokens: int
    latency_ms: float


class TraceStore:
    """In-memory record of orchestrated turns."""

    def __init__(self) -> None:
        self._records: dict[str, TurnRecord] = {}

    def create_record(
        self,
        *,
        question: str,
        answer: str,
        success: bool,
        tool_traces: list[ToolTrace],
        latency_ms: float,
    ) -> TurnRecord:
        trace_id = str(uuid.uuid4())
        record = TurnRecord(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            answer=answer,
            success=success,
            tool_traces=tool_traces,
            input_tokens=estimate_token_count(question),
            output_tokens=estimate_token_count(answer),
            latency_ms=latency_ms,
        )
        self._records[trace_id] = record
        return record

    def summary(self) -> dict[str, float | int]:
        """Aggregate turn metrics, printed when the session ends."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_turns": 0,
                "failed_turns": 0,
                "tool_calls": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_turns": total,
            "failed_turns": sum(1 for record in records if not record.success),
            "tool_calls": sum(len(record.tool_traces) for record in records),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
