"""Unit tests for the inference service client.

The HTTP layer is replaced by httpx.MockTransport; backoff is configured
to zero so retries run instantly.
"""
import json

import httpx
import pytest

from crosswalk.config import LLMSettings
from crosswalk.errors.exceptions import AIError, AuthenticationError, RateLimitExceeded
from crosswalk.services.llm.client import (
    MockInferenceClient,
    OpenAIChatClient,
    create_inference_client,
    estimate_request_tokens,
    estimate_tokens,
)
from crosswalk.services.llm.rate_limiter import RateLimiter

MESSAGES = [
    {"role": "system", "content": "You are an HVAC product expert."},
    {"role": "user", "content": "Match SKU ABC-123"},
]


def completion_body(content: dict, total_tokens: int = 321) -> dict:
    return {
        "model": "gpt-4o-mini",
        "choices": [{"message": {"role": "assistant", "content": json.dumps(content)}}],
        "usage": {"prompt_tokens": 300, "completion_tokens": 21, "total_tokens": total_tokens},
    }


class ScriptedTransport:
    """Replays a list of responses (or exceptions) and records requests."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.answers[min(len(self.requests), len(self.answers)) - 1]
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture
def llm_config():
    return LLMSettings(
        api_key="test-key",
        base_url="https://inference.test/v1",
        model="gpt-4o-mini",
        max_retries=3,
        backoff_base=0,
        backoff_max=0,
    )


@pytest.fixture
def limiter():
    return RateLimiter(requests_per_minute=100, tokens_per_minute=100000)


def make_client(llm_config, limiter, script):
    return OpenAIChatClient(llm_config, limiter, transport=httpx.MockTransport(script))


class TestTokenEstimation:
    """Tests for outbound token estimates."""

    def test_four_characters_per_token(self):
        assert estimate_tokens("a" * 400) == 100
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0

    def test_request_estimate_adds_buffer_and_completion(self):
        messages = [{"role": "user", "content": "a" * 400}]
        assert estimate_request_tokens(messages, max_tokens=1024) == 120 + 1024


class TestOpenAIChatClient:
    """Tests for OpenAIChatClient."""

    @pytest.mark.asyncio
    async def test_successful_completion(self, llm_config, limiter):
        answer = {"match_found": True, "matched_sku": "LEN-AC-3T-16S", "confidence": 0.8, "reasoning": ["r"]}
        script = ScriptedTransport(httpx.Response(200, json=completion_body(answer)))

        async with make_client(llm_config, limiter, script) as client:
            response = await client.complete_json(MESSAGES)

        assert json.loads(response.content) == answer
        assert response.tokens_used == 321

        request = script.requests[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer test-key"
        payload = json.loads(request.content)
        assert payload["model"] == "gpt-4o-mini"
        assert payload["temperature"] == pytest.approx(0.1)
        assert payload["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in payload["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_actual_usage_recorded_against_limiter(self, llm_config, limiter):
        script = ScriptedTransport(httpx.Response(200, json=completion_body({}, total_tokens=500)))

        async with make_client(llm_config, limiter, script) as client:
            await client.complete_json(MESSAGES)

        info = limiter.can_make_request(0)
        assert info.requests_remaining == 99
        assert info.tokens_remaining == 100000 - 500

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, llm_config, limiter):
        script = ScriptedTransport(
            httpx.Response(503, text="overloaded"),
            httpx.Response(200, json=completion_body({"ok": True})),
        )

        async with make_client(llm_config, limiter, script) as client:
            response = await client.complete_json(MESSAGES)

        assert json.loads(response.content) == {"ok": True}
        assert len(script.requests) == 2
        # Both completed calls count against the window
        assert limiter.can_make_request(0).requests_remaining == 98

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self, llm_config, limiter):
        request = httpx.Request("POST", "https://inference.test/v1/chat/completions")
        script = ScriptedTransport(
            httpx.ConnectError("connection refused", request=request),
            httpx.Response(200, json=completion_body({"ok": True})),
        )

        async with make_client(llm_config, limiter, script) as client:
            await client.complete_json(MESSAGES)

        assert len(script.requests) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self, llm_config, limiter):
        script = ScriptedTransport(httpx.Response(429, headers={"retry-after": "1"}, text="slow down"))

        async with make_client(llm_config, limiter, script) as client:
            with pytest.raises(RateLimitExceeded) as exc_info:
                await client.complete_json(MESSAGES)

        assert len(script.requests) == 3
        assert exc_info.value.retry_after == 1.0
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_authentication_errors_are_not_retried(self, llm_config, limiter, status):
        script = ScriptedTransport(httpx.Response(status, json={"error": "invalid api key"}))

        async with make_client(llm_config, limiter, script) as client:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.complete_json(MESSAGES)

        assert len(script.requests) == 1
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self, llm_config, limiter):
        script = ScriptedTransport(httpx.Response(400, json={"error": "bad messages"}))

        async with make_client(llm_config, limiter, script) as client:
            with pytest.raises(AIError) as exc_info:
                await client.complete_json(MESSAGES)

        assert len(script.requests) == 1
        assert exc_info.value.status_code == 400
        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    async def test_malformed_envelope_raises_ai_error(self, llm_config, limiter):
        script = ScriptedTransport(httpx.Response(200, json={"unexpected": True}))

        async with make_client(llm_config, limiter, script) as client:
            with pytest.raises(AIError):
                await client.complete_json(MESSAGES)

        assert len(script.requests) == 1

    def test_requires_api_key(self, limiter):
        with pytest.raises(ValueError):
            OpenAIChatClient(LLMSettings(api_key=None), limiter)

    def test_rate_limit_info_exposed(self, llm_config, limiter):
        client = OpenAIChatClient(llm_config, limiter)
        assert client.get_rate_limit_info().requests_remaining == 100


class TestCreateInferenceClient:
    """Tests for the client factory."""

    def test_no_key_means_no_client(self):
        assert create_inference_client(LLMSettings(api_key=None)) is None

    def test_disabled_means_no_client(self):
        assert create_inference_client(LLMSettings(api_key="k", enabled=False)) is None

    def test_builds_limiter_from_settings(self):
        client = create_inference_client(
            LLMSettings(api_key="k", requests_per_minute=7, tokens_per_minute=7000)
        )
        assert isinstance(client, OpenAIChatClient)
        assert client.rate_limiter.requests_per_minute == 7
        assert client.rate_limiter.tokens_per_minute == 7000

    def test_uses_injected_limiter(self, limiter):
        client = create_inference_client(LLMSettings(api_key="k"), limiter)
        assert client.rate_limiter is limiter


class TestMockInferenceClient:
    """Tests for MockInferenceClient."""

    @pytest.mark.asyncio
    async def test_replays_answers_then_repeats_last(self):
        client = MockInferenceClient([{"n": 1}, "not json"])

        first = await client.complete_json(MESSAGES)
        second = await client.complete_json(MESSAGES)
        third = await client.complete_json(MESSAGES)

        assert json.loads(first.content) == {"n": 1}
        assert second.content == "not json"
        assert third.content == "not json"
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_raises_scripted_exceptions(self):
        client = MockInferenceClient([AIError("boom")])
        with pytest.raises(AIError):
            await client.complete_json(MESSAGES)
