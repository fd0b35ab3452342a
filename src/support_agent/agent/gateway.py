"""Model gateway: retrying, timeout-bounded calls to a chat model backend."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from support_agent.config import GatewayConfig
from support_agent.obs.tracing import Timer
from support_agent.types import ModelCallResult, TokenUsage

logger = logging.getLogger(__name__)


class AgentError(RuntimeError):
    """The model backend stayed unavailable after all retries.

    The failure that ended the last attempt is chained as `__cause__` and
    exposed as `cause`; `status_code` carries its HTTP status when it had one.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


@dataclass(slots=True)
class CostModel:
    """Token pricing model (USD per million tokens)."""

    input_per_million: float = 3.0
    output_per_million: float = 15.0

    def estimate_cost(self, tokens: TokenUsage) -> float:
        return (tokens.input * self.input_per_million) / 1_000_000 + (
            tokens.output * self.output_per_million
        ) / 1_000_000


def status_code_of(error: BaseException | None) -> int | None:
    """HTTP status carried by an SDK error (`status_code` or `status`)."""

    for attribute in ("status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable(error: BaseException, config: GatewayConfig) -> bool:
    """Timeouts, rate limiting, overload and 5xx are transient."""

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    status = status_code_of(error)
    if status is None:
        return False
    return status in config.retryable_status_codes or status >= 500


def backoff_delay(attempt: int, config: GatewayConfig) -> float:
    """Seconds to wait after failed attempt number `attempt` (1-based)."""

    return min(config.base_delay_seconds * 2 ** (attempt - 1), config.max_delay_seconds)


class ModelGateway:
    """Single entry point for generating an answer from a chat model.

    `llm` is any LangChain chat model (`ainvoke` taking a message list and
    returning an `AIMessage`). SDK-level retries should be disabled on it; this
    class owns the retry policy:

    - each attempt is bounded by `timeout_seconds`;
    - retryable failures (see `is_retryable`) back off exponentially,
      `base_delay * 2**(attempt-1)` capped at `max_delay`, up to
      `max_attempts` attempts in total;
    - any other failure stops immediately.

    When attempts run out, or on the first non-retryable failure, an
    `AgentError` is raised from the last underlying error.
    """

    def __init__(
        self,
        llm: Any | None,
        config: GatewayConfig | None = None,
        *,
        cost_model: CostModel | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.llm = llm
        self.config = config or GatewayConfig()
        self.cost_model = cost_model or CostModel(
            input_per_million=self.config.input_price_per_million,
            output_per_million=self.config.output_price_per_million,
        )
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return self.llm is not None

    async def call_model(
        self, system_prompt: str, user_message: str, correlation_id: str
    ) -> ModelCallResult:
        if self.llm is None:
            logger.error("No model backend configured (trace_id=%s)", correlation_id)
            raise AgentError("No model backend configured")

        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_message)]
        max_attempts = self.config.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            logger.debug(
                "Calling model trace_id=%s attempt=%d/%d model=%s",
                correlation_id,
                attempt,
                max_attempts,
                self.config.model_name,
            )
            try:
                with Timer() as timer:
                    response = await asyncio.wait_for(
                        self.llm.ainvoke(messages), timeout=self.config.timeout_seconds
                    )
            except Exception as exc:
                last_error = exc
                retryable = is_retryable(exc, self.config)
                logger.warning(
                    "Model call failed trace_id=%s attempt=%d status=%s retryable=%s: %r",
                    correlation_id,
                    attempt,
                    status_code_of(exc),
                    retryable,
                    exc,
                )
                if not retryable or attempt == max_attempts:
                    break

                delay = backoff_delay(attempt, self.config)
                logger.debug(
                    "Retrying trace_id=%s in %.1fs after attempt %d", correlation_id, delay, attempt
                )
                await self._sleep(delay)
                continue

            result = self._normalize(response, latency_ms=timer.elapsed_ms, attempts=attempt)
            logger.info(
                "Model call succeeded trace_id=%s attempt=%d latency_ms=%.1f tokens=%d/%d cost_usd=%.6f",
                correlation_id,
                attempt,
                result.latency_ms,
                result.tokens.input,
                result.tokens.output,
                result.cost_usd,
            )
            return result

        logger.error("Model call permanently failed trace_id=%s: %r", correlation_id, last_error)
        raise AgentError(
            "Model call failed after retries", status_code=status_code_of(last_error)
        ) from last_error

    def _normalize(self, response: Any, *, latency_ms: float, attempts: int) -> ModelCallResult:
        tokens = _token_usage(response)
        return ModelCallResult(
            text=_message_text(response),
            model=_served_model(response) or self.config.model_name,
            tokens=tokens,
            cost_usd=self.cost_model.estimate_cost(tokens),
            latency_ms=latency_ms,
            attempts=attempts,
        )


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts).strip()
    return str(content)


def _token_usage(response: Any) -> TokenUsage:
    usage = getattr(response, "usage_metadata", None)
    if usage:
        return TokenUsage(
            input=int(usage.get("input_tokens", 0)),
            output=int(usage.get("output_tokens", 0)),
        )

    metadata = getattr(response, "response_metadata", None) or {}
    raw = metadata.get("usage") or metadata.get("token_usage") or {}
    return TokenUsage(
        input=int(raw.get("input_tokens", raw.get("prompt_tokens", 0))),
        output=int(raw.get("output_tokens", raw.get("completion_tokens", 0))),
    )


def _served_model(response: Any) -> str | None:
    metadata = getattr(response, "response_metadata", None) or {}
    model = metadata.get("model") or metadata.get("model_name")
    return str(model) if model else None
