"""Answer-quality checks against the real model backend.

These cost tokens and need a valid API key, so they only run with
ENABLE_PROMPT_TESTS=true. Langfuse is disabled for them.
"""

import os
import time
from pathlib import Path

import pytest

from support_agent.api.main import build_orchestrator
from support_agent.config import AppSettings

pytestmark = [
    pytest.mark.prompt_quality,
    pytest.mark.skipif(
        os.getenv("ENABLE_PROMPT_TESTS") != "true",
        reason="set ENABLE_PROMPT_TESTS=true to call the real model",
    ),
]

_KNOWLEDGE_DIR = Path(__file__).resolve().parents[2] / "knowledge"


def _agent():
    return build_orchestrator(AppSettings(knowledge_dir=_KNOWLEDGE_DIR, langfuse_enabled=False))


@pytest.mark.asyncio
async def test_answers_in_french_when_asked_in_french() -> None:
    result = await _agent().ask(
        "Comment puis-je m'authentifier avec l'API TechCorp ?", session_id="quality-fr"
    )

    french_words = ["vous", "pour", "dans", "avec", "une", "les", "est", "votre", "clé"]
    answer = result.answer.lower()
    assert len(result.answer) > 50
    assert sum(word in answer for word in french_words) >= 3


@pytest.mark.asyncio
async def test_uses_rate_limit_section() -> None:
    result = await _agent().ask("What are the rate limits for the TechCorp API?")

    assert any("rate" in chunk_id for chunk_id in result.knowledge_chunks)
    assert any(char.isdigit() for char in result.answer)


@pytest.mark.asyncio
async def test_declines_out_of_scope_questions() -> None:
    result = await _agent().ask("Can you give me a recipe for chocolate cake?")

    answer = result.answer.lower()
    refusals = ["not", "don't", "cannot", "only", "outside", "scope", "documentation", "unable"]
    assert any(word in answer for word in refusals)


@pytest.mark.asyncio
async def test_simple_question_is_fast() -> None:
    start = time.perf_counter()
    result = await _agent().ask("What is the base URL of the TechCorp API?")

    assert time.perf_counter() - start < 8.0
    assert "api.techcorp.io" in result.answer
