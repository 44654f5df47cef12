"""Configuration management using pydantic-settings."""
import logging
import sys
from enum import Enum
from typing import Optional, TextIO

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class MatchingSettings(BaseSettings):
    """Sequential matching configuration loaded from environment variables.

    All settings prefixed with MATCH_ (e.g., MATCH_FUZZY_THRESHOLD=0.65).
    Thresholds are acceptance floors on the 0-1 confidence scale: a stage
    short-circuits the chain only when its best candidate reaches its floor.
    """

    # Stage acceptance thresholds
    exact_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum confidence for an exact SKU/model hit to be accepted"
    )
    fuzzy_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum combined fuzzy score to accept a candidate"
    )
    specification_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum weighted spec agreement to accept a candidate"
    )
    ai_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum AI-reported confidence to accept its match"
    )
    research_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum confidence for a research finding to be accepted"
    )

    # Fuzzy matching tuning
    fuzzy_field_floor: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Per-field similarity below this contributes nothing"
    )
    fuzzy_confidence_cap: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Fuzzy confidence never exceeds an exact model match"
    )
    brand_bonus: float = Field(
        default=0.15,
        ge=0,
        le=1,
        description="Added to the fuzzy score when brands match"
    )

    # Specification matching tuning
    spec_min_fields: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Minimum number of comparable spec fields per candidate"
    )

    # Candidate limits
    max_candidates: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum ranked candidates a stage reports"
    )
    ai_shortlist_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Catalog entries sent to the inference service"
    )

    # Result cache
    cache_enabled: bool = Field(default=True, description="Cache accepted resolutions")
    cache_ttl_seconds: int = Field(
        default=86400,
        ge=1,
        description="Seconds a cached resolution stays valid"
    )
    cache_max_entries: int = Field(
        default=10000,
        ge=1,
        description="Oldest entries are evicted beyond this size"
    )

    model_config = SettingsConfigDict(
        env_prefix="MATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class LLMSettings(BaseSettings):
    """Inference service configuration for AI-assisted matching.

    All settings prefixed with LLM_ (e.g., LLM_API_KEY=sk-...).
    Stage 4 is skipped entirely when no API key is configured.
    """

    api_key: Optional[str] = Field(
        default=None,
        description="Inference service API key (stage 4 disabled when unset)"
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI-compatible API base URL"
    )
    model: str = Field(default="gpt-4o-mini", description="Chat model to use")

    # Request Configuration
    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Hard request timeout in seconds"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts for transient failures"
    )
    backoff_base: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Base delay in seconds for exponential backoff"
    )
    backoff_max: float = Field(
        default=10.0,
        ge=0.0,
        le=120.0,
        description="Upper bound on a single backoff delay"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Model temperature (lower = more deterministic)"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )

    # Rate limits (sliding 60 second window)
    requests_per_minute: int = Field(default=60, ge=1, description="Request cap per minute")
    tokens_per_minute: int = Field(default=90000, ge=100, description="Token cap per minute")

    enabled: bool = Field(default=True, description="Enable/disable AI matching globally")

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class BatchSettings(BaseSettings):
    """Batch scheduler defaults.

    All settings prefixed with BATCH_ (e.g., BATCH_CONCURRENCY=5).
    """

    concurrency: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Concurrent resolutions per job"
    )
    timeout_ms: int = Field(
        default=30000,
        ge=1,
        description="Per-item wall-clock budget in milliseconds"
    )
    retry_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries per item after the first attempt"
    )
    retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Base delay for exponential item backoff"
    )
    skip_on_error: bool = Field(
        default=True,
        description="Continue the batch when an item exhausts its retries"
    )
    max_active_jobs: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Jobs executing at once; the rest stay pending"
    )
    shutdown_grace_seconds: float = Field(
        default=30.0,
        ge=0,
        description="How long shutdown waits for running jobs"
    )
    job_ttl_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Finished jobs older than this are removed by cleanup"
    )

    model_config = SettingsConfigDict(
        env_prefix="BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    log_level: str = "INFO"
    environment: Environment = Environment.DEVELOPMENT

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


# Global settings instances
settings = Settings()
matching_settings = MatchingSettings()
llm_settings = LLMSettings()
batch_settings = BatchSettings()


def configure_logging(
    log_level: str = "INFO",
    json_output: Optional[bool] = None,
    stream: TextIO = sys.stdout,
) -> None:
    """Configure structlog for structured logging.

    Args:
        log_level: Standard library level name (DEBUG, INFO, ...)
        json_output: Force JSON rendering; defaults to production only
        stream: Where log lines are written
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=stream, level=level, force=True)

    if json_output is None:
        json_output = settings.is_production

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
