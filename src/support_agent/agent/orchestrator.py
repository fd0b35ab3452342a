"""Agent orchestrator: retrieval, grounded prompt, model call, tracing."""

from __future__ import annotations

import logging
import uuid

from support_agent.agent.gateway import AgentError, ModelGateway
from support_agent.config import AgentConfig
from support_agent.knowledge.store import KnowledgeStore
from support_agent.obs.tracing import Timer, TraceRecord, TraceRecorder
from support_agent.types import AgentResult, ScoredChunk

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
NO_CONTEXT_NOTICE = "(No documentation section matched this question.)"

_SYSTEM_PROMPT_TEMPLATE = """
You are a helpful support agent for {product}.
You answer developer questions based strictly on the provided documentation.

DOCUMENTATION CONTEXT:
{context}

INSTRUCTIONS:
- Answer only questions related to {product}
- If the answer is not in the documentation, say so clearly and do not invent information
- Keep answers concise and developer-friendly
- Include relevant code examples when helpful
- Cite the documentation section you used (e.g., "According to the Authentication section...")
- If the question is not written in {language}, respond in the language of the question; otherwise respond in {language}
""".strip()


def build_system_prompt(chunks: list[ScoredChunk], config: AgentConfig | None = None) -> str:
    """Compose the grounding prompt from retrieved chunks, best first."""

    config = config or AgentConfig()
    context = CONTEXT_SEPARATOR.join(item.chunk.content for item in chunks)
    return _SYSTEM_PROMPT_TEMPLATE.format(
        product=config.product_name,
        context=context or NO_CONTEXT_NOTICE,
        language=config.default_language,
    )


class AgentOrchestrator:
    """Single entry point for answering one question.

    Every call runs the same steps in order: retrieve chunks, build the
    prompt, call the model, hand the interaction to the trace recorder without
    waiting for it, and return an `AgentResult`. The orchestrator keeps no
    state between calls.
    """

    def __init__(
        self,
        *,
        knowledge: KnowledgeStore,
        gateway: ModelGateway,
        tracer: TraceRecorder,
        config: AgentConfig | None = None,
    ) -> None:
        self.knowledge = knowledge
        self.gateway = gateway
        self.tracer = tracer
        self.config = config or AgentConfig()

    async def ask(self, question: str, *, session_id: str | None = None) -> AgentResult:
        """Answer `question` from the knowledge corpus.

        Raises:
            AgentError: the model backend failed permanently. No trace is
                recorded for failed interactions.
        """

        trace_id = str(uuid.uuid4())
        logger.info(
            "Agent query started trace_id=%s session_id=%s question_length=%d",
            trace_id,
            session_id,
            len(question),
        )

        with Timer() as timer:
            await self.knowledge.aload_knowledge()
            chunks = self.knowledge.find_relevant_chunks(question, self.config.top_k)
            chunk_ids = [item.id for item in chunks]
            logger.debug("Knowledge retrieval complete trace_id=%s chunks=%s", trace_id, chunk_ids)

            system_prompt = build_system_prompt(chunks, self.config)
            try:
                model_result = await self.gateway.call_model(system_prompt, question, trace_id)
            except AgentError as exc:
                logger.error("Agent query failed trace_id=%s: %s", trace_id, exc)
                raise

        self.tracer.dispatch(
            TraceRecord(
                trace_id=trace_id,
                session_id=session_id,
                input=question,
                output=model_result.text,
                model=model_result.model,
                tokens=model_result.tokens,
                cost_usd=model_result.cost_usd,
                latency_ms=timer.elapsed_ms,
                knowledge_chunks=chunk_ids,
                system_prompt=system_prompt,
            )
        )

        logger.info(
            "Agent query completed trace_id=%s latency_ms=%.1f tokens=%d cost_usd=%.6f",
            trace_id,
            timer.elapsed_ms,
            model_result.tokens.total,
            model_result.cost_usd,
        )
        return AgentResult(
            answer=model_result.text,
            trace_id=trace_id,
            latency_ms=timer.elapsed_ms,
            tokens_used=model_result.tokens.total,
            cost_usd=model_result.cost_usd,
            knowledge_chunks=chunk_ids,
        )
