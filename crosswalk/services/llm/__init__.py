"""Inference service integration for AI-assisted matching."""

from crosswalk.services.llm.client import (
    InferenceClient,
    LLMResponse,
    MockInferenceClient,
    OpenAIChatClient,
    create_inference_client,
)
from crosswalk.services.llm.enhancer import AIEnhancer, AIMatchResponse, parse_ai_response
from crosswalk.services.llm.rate_limiter import RateLimiter, RateLimitInfo

__all__ = [
    "InferenceClient",
    "LLMResponse",
    "MockInferenceClient",
    "OpenAIChatClient",
    "create_inference_client",
    "AIEnhancer",
    "AIMatchResponse",
    "parse_ai_response",
    "RateLimiter",
    "RateLimitInfo",
]
