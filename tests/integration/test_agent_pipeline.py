import asyncio
import re

import pytest
from langchain_core.messages import AIMessage

from support_agent.agent.gateway import AgentError, ModelGateway
from support_agent.agent.orchestrator import AgentOrchestrator
from support_agent.knowledge.store import KnowledgeStore
from support_agent.obs.tracing import InMemoryTraceRecorder, TraceRecord, TraceRecorder

_UUID4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class MockLLM:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.prompts: list[str] = []

    async def ainvoke(self, messages: list[object]) -> AIMessage:
        self.prompts.append(str(getattr(messages[0], "content", "")))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return AIMessage(
            content="According to the Authentication section, send a Bearer token.",
            usage_metadata={"input_tokens": 250, "output_tokens": 75, "total_tokens": 325},
            response_metadata={"model": "claude-sonnet-4-5-20250929"},
        )


class _FailingRecorder(TraceRecorder):
    async def _deliver(self, record: TraceRecord) -> None:
        raise RuntimeError("observability backend down")


def _knowledge(tmp_path) -> KnowledgeStore:
    knowledge_dir = tmp_path / "knowledge"
    knowledge_dir.mkdir()
    (knowledge_dir / "api-reference.md").write_text(
        "# TechCorp API\n\nREST API for developers.\n\n"
        "## Authentication\n\nTo authenticate with the API, send a Bearer token.\n\n"
        "## Rate Limits\n\nThe Free plan allows 60 requests per minute.\n",
        encoding="utf-8",
    )
    (knowledge_dir / "getting-started.md").write_text(
        "# Getting Started\n\nSign up first.\n\n## SDKs\n\nInstall the Python SDK with pip.\n",
        encoding="utf-8",
    )
    return KnowledgeStore(knowledge_dir)


def _orchestrator(tmp_path, llm: MockLLM, tracer: TraceRecorder | None = None) -> AgentOrchestrator:
    return AgentOrchestrator(
        knowledge=_knowledge(tmp_path),
        gateway=ModelGateway(llm),
        tracer=tracer or InMemoryTraceRecorder(),
    )


@pytest.mark.asyncio
async def test_ask_returns_structured_result_and_records_trace(tmp_path) -> None:
    llm = MockLLM()
    tracer = InMemoryTraceRecorder()
    agent = _orchestrator(tmp_path, llm, tracer)

    result = await agent.ask("How do I authenticate with the API?", session_id="sess-1")

    assert result.answer.startswith("According to the Authentication section")
    assert _UUID4.match(result.trace_id)
    assert result.tokens_used == 325
    assert result.cost_usd == pytest.approx(250 * 3e-6 + 75 * 15e-6)
    assert result.latency_ms >= 0
    assert result.knowledge_chunks[0] == "api-reference#authentication"
    assert len(result.knowledge_chunks) <= 3
    assert "Bearer token" in llm.prompts[0]

    await tracer.shutdown(timeout=1.0)
    trace = tracer.get(result.trace_id)
    assert trace.session_id == "sess-1"
    assert trace.output == result.answer
    assert trace.knowledge_chunks == result.knowledge_chunks
    assert trace.system_prompt == llm.prompts[0]
    assert trace.latency_ms == result.latency_ms


@pytest.mark.asyncio
async def test_concurrent_asks_get_distinct_trace_ids(tmp_path) -> None:
    agent = _orchestrator(tmp_path, MockLLM())

    first, second = await asyncio.gather(
        agent.ask("What are the rate limits?"),
        agent.ask("How do I install the SDK?"),
    )

    assert first.trace_id != second.trace_id


@pytest.mark.asyncio
async def test_backend_failure_propagates_agent_error_without_trace(tmp_path) -> None:
    tracer = InMemoryTraceRecorder()
    agent = _orchestrator(tmp_path, MockLLM(error=_StatusError("API down", 401)), tracer)

    with pytest.raises(AgentError):
        await agent.ask("test")

    assert tracer.pending_count == 0
    assert tracer.list_recent() == []


@pytest.mark.asyncio
async def test_tracing_failure_never_changes_the_result(tmp_path) -> None:
    tracer = _FailingRecorder()
    agent = _orchestrator(tmp_path, MockLLM(), tracer)

    result = await agent.ask("How do I authenticate with the API?")
    await tracer.shutdown(timeout=1.0)

    assert result.answer
    assert result.tokens_used == 325


@pytest.mark.asyncio
async def test_irrelevant_question_sends_no_context(tmp_path) -> None:
    llm = MockLLM()
    agent = _orchestrator(tmp_path, llm)

    result = await agent.ask("xyzzy foobarbaz")

    assert result.knowledge_chunks == []
    assert "No documentation section matched" in llm.prompts[0]
