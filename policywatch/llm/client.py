"""
Request/response adapter over a LangChain chat model.

One ``complete()`` call is one model request: bounded retries with
exponential backoff for transient failures, ``Retry-After`` honoured on 429,
provider rate limit, and an optional absolute deadline that no retry or
sleep is allowed to cross.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple, Union

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from policywatch.config import settings
from policywatch.llm import factory
from policywatch.llm.exceptions import LLMDeadlineExceeded, LLMEmptyResponseError, LLMRequestError
from policywatch.llm.rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

Message = Tuple[str, str]  # (role, content)

_TRANSIENT_ERROR_NAMES = {"APIConnectionError", "APITimeoutError"}


class LLMResponse(BaseModel):
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: Optional[str] = None
    latency_ms: int = 0

    @property
    def was_truncated(self) -> bool:
        return self.finish_reason == "length"


def _to_messages(messages: Sequence[Union[Message, BaseMessage]]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in messages:
        if isinstance(message, BaseMessage):
            converted.append(message)
            continue
        role, content = message
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "user":
            converted.append(HumanMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            raise ValueError(f"Unknown message role: {role!r}")
    return converted


def _message_text(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    # Anthropic-style content blocks
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _finish_reason(message: AIMessage) -> Optional[str]:
    metadata = message.response_metadata or {}
    reason = metadata.get("finish_reason") or metadata.get("stop_reason") or metadata.get("done_reason")
    # Anthropic reports truncation as "max_tokens"
    if reason == "max_tokens":
        return "length"
    return reason


def _retry_after_seconds(exc: Exception) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def classify_error(exc: Exception, retryable_statuses: Sequence[int]) -> LLMRequestError:
    """Map a provider SDK / transport exception onto LLMRequestError."""
    if isinstance(exc, LLMRequestError):
        return exc
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return LLMRequestError(
            f"LLM request failed with status {status}: {exc}",
            status_code=status,
            retryable=status in retryable_statuses,
            retry_after=_retry_after_seconds(exc) if status == 429 else None,
        )
    transient = isinstance(exc, (asyncio.TimeoutError, ConnectionError, httpx.TransportError)) or (
        type(exc).__name__ in _TRANSIENT_ERROR_NAMES
    )
    return LLMRequestError(f"LLM request failed: {exc}", retryable=transient)


class LLMClient:
    def __init__(
        self,
        model_factory: Optional[Callable[[float, int], object]] = None,
        model_name: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        max_attempts: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        multiplier: Optional[float] = None,
    ):
        self._model_factory = model_factory or factory.get_analysis_llm
        self.model_name = model_name or factory.get_analysis_model_name()
        self._rate_limiter = rate_limiter
        self.max_attempts = max_attempts or settings.LLM_RETRY_ATTEMPTS
        self.initial_delay_ms = settings.LLM_RETRY_INITIAL_DELAY_MS if initial_delay_ms is None else initial_delay_ms
        self.multiplier = multiplier or settings.LLM_RETRY_MULTIPLIER
        self.retryable_statuses = tuple(settings.LLM_RETRYABLE_STATUS_CODES)

    @classmethod
    def from_settings(cls) -> "LLMClient":
        limiter = get_rate_limiter(factory.get_analysis_provider(), settings.LLM_RATE_LIMIT_RPM)
        return cls(rate_limiter=limiter)

    def is_reasoning_model(self) -> bool:
        return any(self.model_name.startswith(prefix) for prefix in settings.LLM_REASONING_MODEL_PREFIXES)

    def default_max_tokens(self) -> int:
        if self.is_reasoning_model():
            return settings.ANALYSIS_REASONING_MAX_TOKENS
        return settings.ANALYSIS_STANDARD_MAX_TOKENS

    async def complete(
        self,
        messages: Sequence[Union[Message, BaseMessage]],
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> LLMResponse:
        """
        Send one request. ``deadline`` is an absolute ``time.monotonic()`` value.

        Raises LLMRequestError once retries are exhausted or on a non-retryable
        failure, LLMEmptyResponseError on empty content and LLMDeadlineExceeded
        when the deadline would be crossed.
        """
        if max_tokens is None:
            max_tokens = self.default_max_tokens()
        chat_model = self._model_factory(temperature, max_tokens)
        lc_messages = _to_messages(messages)

        delay = self.initial_delay_ms / 1000.0
        for attempt in range(1, self.max_attempts + 1):
            self._check_deadline(deadline)
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire()

            started = time.monotonic()
            try:
                call = chat_model.ainvoke(lc_messages)
                if deadline is not None:
                    message = await asyncio.wait_for(call, timeout=max(deadline - time.monotonic(), 0.001))
                else:
                    message = await call
            except asyncio.TimeoutError as e:
                if deadline is not None and time.monotonic() >= deadline:
                    raise LLMDeadlineExceeded("Analysis deadline reached during LLM request") from e
                error = classify_error(e, self.retryable_statuses)
            except (LLMDeadlineExceeded, asyncio.CancelledError):
                raise
            except Exception as e:
                error = classify_error(e, self.retryable_statuses)
            else:
                return self._to_response(message, started)

            if not error.retryable or attempt >= self.max_attempts:
                logger.error(f"LLM request failed after {attempt} attempt(s): {error}")
                raise error

            wait = delay
            if error.retry_after is not None:
                wait = max(wait, error.retry_after)
            if deadline is not None and time.monotonic() + wait >= deadline:
                raise LLMDeadlineExceeded(
                    f"Analysis deadline would pass before retry {attempt + 1}"
                ) from error
            logger.warning(
                f"LLM attempt {attempt}/{self.max_attempts} failed ({error}), retrying in {wait:.1f}s"
            )
            await asyncio.sleep(wait)
            delay *= self.multiplier

        raise LLMRequestError("LLM retries exhausted")  # unreachable

    @staticmethod
    def _check_deadline(deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise LLMDeadlineExceeded("Analysis deadline reached")

    def _to_response(self, message: AIMessage, started: float) -> LLMResponse:
        content = _message_text(message)
        usage = getattr(message, "usage_metadata", None) or {}
        metadata = message.response_metadata or {}
        response = LLMResponse(
            content=content,
            model=metadata.get("model_name") or metadata.get("model") or self.model_name,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            finish_reason=_finish_reason(message),
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        if not content.strip():
            raise LLMEmptyResponseError(
                f"Empty response from {response.model} (finish_reason={response.finish_reason})"
            )
        return response
