"""Turn tracing and cost accounting."""

from __future__ import annotations

import re
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from page_agent.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnTraceRecord:
    trace_id: str
    timestamp_utc: str
    tenant_id: str
    session_id: str
    message: str
    reply: str
    tool_traces: list[ToolTrace]
    tool_failures: int
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    aborted: bool


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.00015
    output_per_1k: float = 0.0006

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, *, cost_model: CostModel | None = None, max_records: int = 1000) -> None:
        self._records: dict[str, TurnTraceRecord] = {}
        self._cost_model = cost_model or CostModel()
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        tenant_id: str,
        session_id: str,
        message: str,
        reply: str,
        tool_traces: list[ToolTrace],
        input_tokens: int,
        output_tokens: int,
        latency_ms: float,
        aborted: bool = False,
    ) -> TurnTraceRecord:
        record = TurnTraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            tenant_id=tenant_id,
            session_id=session_id,
            message=message,
            reply=reply,
            tool_traces=tool_traces,
            tool_failures=sum(1 for trace in tool_traces if trace.status != "ok"),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
            aborted=aborted,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> TurnTraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnTraceRecord]:
        with self._lock:
            records = list(self._records.values())
        return records[-limit:] if limit > 0 else []

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_tool_calls": 0,
                "total_tool_failures": 0,
                "aborted_turns": 0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_tool_calls": sum(len(record.tool_traces) for record in records),
            "total_tool_failures": sum(record.tool_failures for record in records),
            "aborted_turns": sum(1 for record in records if record.aborted),
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }


class Timer:
    """Simple context timer used by the agent loop."""

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
