"""Interaction tracing: fire-and-forget delivery to Langfuse or memory."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from langfuse import Langfuse

from support_agent.config import TracingConfig
from support_agent.types import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    session_id: str | None
    input: str
    output: str
    model: str
    tokens: TokenUsage
    cost_usd: float
    latency_ms: float
    knowledge_chunks: list[str]
    system_prompt: str
    timestamp_utc: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class TraceRecorder(ABC):
    """Best-effort recorder for completed agent interactions.

    Callers hand a record to `dispatch` and move on: delivery runs in its own
    task and any failure inside it is logged, never raised. `shutdown` gives
    pending deliveries a bounded amount of time to finish and then closes the
    backend.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispatch(self, record: TraceRecord) -> asyncio.Task[None]:
        """Start recording `record` in a detached task and return the task."""

        task = asyncio.create_task(self.record_trace(record), name=f"trace-{record.trace_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def record_trace(self, record: TraceRecord) -> None:
        try:
            await self._deliver(record)
        except Exception:
            logger.exception("Trace recording failed for trace_id=%s", record.trace_id)
            return
        logger.debug(
            "Trace recorded trace_id=%s cost_usd=%.6f latency_ms=%.1f",
            record.trace_id,
            record.cost_usd,
            record.latency_ms,
        )

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Drain pending deliveries and close the backend within `timeout`."""

        deadline = time.monotonic() + timeout
        if self._pending:
            _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout)
            if still_pending:
                logger.warning("Dropping %d undelivered traces at shutdown", len(still_pending))
                for task in still_pending:
                    task.cancel()

        remaining = max(0.0, deadline - time.monotonic())
        try:
            await asyncio.wait_for(self._close(), timeout=max(remaining, 0.1))
        except asyncio.TimeoutError:
            logger.error("Trace backend did not shut down within %.1fs", timeout)
        except Exception:
            logger.exception("Trace backend shutdown failed")

    @abstractmethod
    async def _deliver(self, record: TraceRecord) -> None:
        """Send one record to the backend."""

    async def _close(self) -> None:
        return None


class InMemoryTraceRecorder(TraceRecorder):
    """Keeps traces in process memory; used locally and in tests."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, TraceRecord] = {}

    async def _deliver(self, record: TraceRecord) -> None:
        self._records[record.trace_id] = record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]


class LangfuseTraceRecorder(TraceRecorder):
    """Records each interaction as a Langfuse trace with one generation.

    The Langfuse client queues events and ships them in batches from its own
    background thread; `_deliver` only enqueues, off the event loop. `_close`
    flushes whatever is still buffered.
    """

    def __init__(self, client: Any) -> None:
        super().__init__()
        self._client = client

    async def _deliver(self, record: TraceRecord) -> None:
        await asyncio.to_thread(self._emit, record)

    def _emit(self, record: TraceRecord) -> None:
        trace = self._client.trace(
            id=record.trace_id,
            name="agent-query",
            input={"question": record.input},
            output={"answer": record.output},
            session_id=record.session_id,
            metadata={
                "knowledge_chunks_used": record.knowledge_chunks,
                "cost_usd": record.cost_usd,
                "latency_ms": record.latency_ms,
            },
        )
        trace.generation(
            name="model-completion",
            model=record.model,
            input=[
                {"role": "system", "content": record.system_prompt},
                {"role": "user", "content": record.input},
            ],
            output=record.output,
            usage={
                "input": record.tokens.input,
                "output": record.tokens.output,
                "unit": "TOKENS",
            },
            metadata={"cost_usd": record.cost_usd, "latency_ms": record.latency_ms},
        )

    async def _close(self) -> None:
        await asyncio.to_thread(self._client.shutdown)
        logger.info("Langfuse shutdown complete")


def create_trace_recorder(config: TracingConfig | None = None) -> TraceRecorder:
    """Build the Langfuse recorder when enabled and keyed, else an in-memory one."""

    config = config or TracingConfig()
    if not config.enabled:
        logger.info("Langfuse tracing disabled; keeping traces in memory")
        return InMemoryTraceRecorder()
    if not config.public_key or not config.secret_key:
        logger.warning(
            "LANGFUSE_PUBLIC_KEY or LANGFUSE_SECRET_KEY not set; keeping traces in memory"
        )
        return InMemoryTraceRecorder()

    client = Langfuse(
        public_key=config.public_key,
        secret_key=config.secret_key,
        host=config.host,
        flush_at=config.flush_at,
        flush_interval=config.flush_interval_seconds,
    )
    logger.info("Langfuse tracing initialised (host=%s)", config.host)
    return LangfuseTraceRecorder(client)


class Timer:
    """Context timer measuring wall-clock milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
