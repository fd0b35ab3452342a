"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True)
class ParsedDocument:
    """A markdown source document before chunking."""

    doc_id: str
    text: str


@dataclass(frozen=True, slots=True)
class Chunk:
    """One addressable section of a knowledge document."""

    id: str
    title: str
    content: str
    source: str


@dataclass(slots=True)
class ScoredChunk:
    """A chunk with its relevance score for one query."""

    chunk: Chunk
    score: float

    @property
    def id(self) -> str:
        return self.chunk.id


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input: int
    output: int

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass(slots=True)
class ModelCallResult:
    """Normalized outcome of one successful model invocation."""

    text: str
    model: str
    tokens: TokenUsage
    cost_usd: float
    latency_ms: float
    attempts: int = 1


@dataclass(slots=True)
class AgentResult:
    """Response contract returned by the orchestrator."""

    answer: str
    trace_id: str
    latency_ms: float
    tokens_used: int
    cost_usd: float
    knowledge_chunks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
