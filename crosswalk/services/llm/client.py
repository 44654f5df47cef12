"""Inference service client for AI-assisted matching.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint. Every
outbound call first waits on the injected RateLimiter, then posts with a
hard timeout, and finally records the true token usage against the
limiter, whether the call succeeded or not.

Retry policy (tenacity, exponential backoff capped at ``backoff_max``):
    - network errors, timeouts, 429, 5xx: retried
    - 401/403: AuthenticationError, never retried
    - any other 4xx, or a malformed envelope: AIError, never retried

Example:
    limiter = RateLimiter(requests_per_minute=60, tokens_per_minute=90000)
    async with OpenAIChatClient(llm_settings, limiter) as client:
        response = await client.complete_json(messages)
"""
import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from crosswalk.config import LLMSettings
from crosswalk.errors.exceptions import AIError, AuthenticationError, RateLimitExceeded
from crosswalk.services.llm.rate_limiter import RateLimiter, RateLimitInfo

logger = structlog.get_logger(__name__)

CHARS_PER_TOKEN = 4
TOKEN_BUFFER = 1.2

Message = Dict[str, str]


def estimate_tokens(text: str) -> int:
    """Rough token count for ``text`` (4 characters per token)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_request_tokens(messages: Sequence[Message], max_tokens: int = 0) -> int:
    """Prompt estimate with a 20% buffer, plus the completion allowance."""
    prompt_tokens = sum(estimate_tokens(m.get("content", "")) for m in messages)
    return math.ceil(prompt_tokens * TOKEN_BUFFER) + max_tokens


@dataclass
class LLMResponse:
    """Response from the inference service."""
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    raw_response: Optional[Dict[str, Any]] = None
    estimated_tokens: int = 0

    @property
    def tokens_used(self) -> int:
        """Total tokens used, falling back to the outbound estimate."""
        return self.usage.get("total_tokens") or self.estimated_tokens


class InferenceClient(ABC):
    """Abstract base class for inference service clients."""

    model: str = ""

    @abstractmethod
    async def complete_json(self, messages: List[Message]) -> LLMResponse:
        """Run a chat completion that must answer with a JSON object.

        Args:
            messages: Chat messages (system + user)

        Returns:
            LLMResponse with the raw JSON text in ``content``

        Raises:
            AuthenticationError: On 401/403
            AIError: When the call fails after retries
        """

    def get_rate_limit_info(self) -> Optional[RateLimitInfo]:
        """Current budget snapshot, if the client is rate limited."""
        return None

    async def close(self) -> None:
        """Release network resources."""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, AIError) and exc.transient


class OpenAIChatClient(InferenceClient):
    """httpx client for OpenAI-compatible chat completion endpoints.

    Attributes:
        config: LLM settings (model, timeouts, retry tuning)
        rate_limiter: Shared budget; the same instance must be handed to
            every client that spends from the same account
    """

    def __init__(
        self,
        config: LLMSettings,
        rate_limiter: RateLimiter,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not config.api_key:
            raise ValueError("OpenAIChatClient requires an API key")
        self.config = config
        self.model = config.model
        self.rate_limiter = rate_limiter
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = logger.bind(
            component="OpenAIChatClient",
            model=config.model,
            base_url=config.base_url,
        )

    async def __aenter__(self) -> "OpenAIChatClient":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                timeout=httpx.Timeout(
                    connect=5.0,
                    read=self.config.timeout,
                    write=5.0,
                    pool=5.0,
                ),
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_rate_limit_info(self) -> RateLimitInfo:
        return self.rate_limiter.can_make_request(0)

    async def complete_json(self, messages: List[Message]) -> LLMResponse:
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }
        estimated = estimate_request_tokens(messages, self.config.max_tokens)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.backoff_base, max=self.config.backoff_max),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(payload, estimated)

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        self._log.warning(
            "inference_retry",
            attempt=retry_state.attempt_number,
            error_code=getattr(exc, "code", None),
            status_code=getattr(exc, "status_code", None),
            error=str(exc),
        )

    async def _send(self, payload: Dict[str, Any], estimated: int) -> LLMResponse:
        """One rate-limited HTTP round trip."""
        reservation = await self.rate_limiter.wait_if_needed(estimated)
        client = await self._get_client()

        try:
            response = await client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise AIError(f"Inference request timed out: {e}", transient=True) from e
        except httpx.HTTPError as e:
            raise AIError(f"Inference request failed: {e}", transient=True) from e

        body = self._decode(response)
        usage = body.get("usage") if isinstance(body, dict) else None
        actual = estimated
        if isinstance(usage, dict) and isinstance(usage.get("total_tokens"), int):
            actual = usage["total_tokens"]
        self.rate_limiter.record_request(actual, reservation)

        self._raise_for_status(response)

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIError(
                "Malformed inference response envelope",
                status_code=response.status_code,
            ) from e
        if not isinstance(content, str):
            raise AIError("Inference response has no text content", status_code=response.status_code)

        self._log.debug(
            "inference_completed",
            status_code=response.status_code,
            tokens_used=actual,
        )
        return LLMResponse(
            content=content,
            model=body.get("model", self.config.model),
            usage=usage if isinstance(usage, dict) else {},
            raw_response=body,
            estimated_tokens=estimated,
        )

    @staticmethod
    def _decode(response: httpx.Response) -> Union[Dict[str, Any], None]:
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            return None
        return body if isinstance(body, dict) else None

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        snippet = response.text[:200]
        if status in (401, 403):
            self._log.error("inference_auth_failed", status_code=status)
            raise AuthenticationError(
                f"Inference service rejected credentials ({status})",
                status_code=status,
            )
        if status == 429:
            retry_after = response.headers.get("retry-after")
            try:
                retry_after_seconds = float(retry_after) if retry_after else None
            except ValueError:
                retry_after_seconds = None
            raise RateLimitExceeded(
                details={"body": snippet},
                retry_after=retry_after_seconds,
            )
        if status >= 500:
            raise AIError(
                f"Inference service error ({status})",
                status_code=status,
                details={"body": snippet},
                transient=True,
            )
        raise AIError(
            f"Inference request rejected ({status})",
            status_code=status,
            details={"body": snippet},
        )


class MockInferenceClient(InferenceClient):
    """Mock client for testing and offline runs.

    Answers are consumed in order; the last one repeats. An answer may be
    a dict (serialized to JSON), a raw string (returned verbatim, which
    allows malformed bodies) or an exception instance (raised).
    """

    def __init__(
        self,
        responses: Optional[Sequence[Union[Dict[str, Any], str, BaseException]]] = None,
        tokens_per_call: int = 150,
        model: str = "mock-model",
    ):
        self.responses = list(responses or [{
            "match_found": False,
            "matched_sku": None,
            "confidence": 0.0,
            "reasoning": ["No comparable product in catalog"],
        }])
        self.tokens_per_call = tokens_per_call
        self.model = model
        self.calls: List[List[Message]] = []

    async def complete_json(self, messages: List[Message]) -> LLMResponse:
        self.calls.append(list(messages))
        index = min(len(self.calls), len(self.responses)) - 1
        answer = self.responses[index]
        if isinstance(answer, BaseException):
            raise answer
        content = answer if isinstance(answer, str) else json.dumps(answer)
        return LLMResponse(
            content=content,
            model=self.model,
            usage={"total_tokens": self.tokens_per_call},
        )


def create_inference_client(
    config: LLMSettings,
    rate_limiter: Optional[RateLimiter] = None,
) -> Optional[InferenceClient]:
    """Build the configured inference client.

    Returns:
        A client, or None when AI matching is disabled or no key is set
    """
    if not config.enabled or not config.api_key:
        logger.info("inference_client_disabled", enabled=config.enabled, has_api_key=bool(config.api_key))
        return None
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            requests_per_minute=config.requests_per_minute,
            tokens_per_minute=config.tokens_per_minute,
        )
    return OpenAIChatClient(config, rate_limiter)
