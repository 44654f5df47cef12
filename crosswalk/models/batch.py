"""Batch job models.

State Transitions:
    - pending -> running -> completed | failed
    - pending -> cancelled (removed from the queue before it starts)
    - running -> cancelled (in-flight items drain, nothing new starts)

No other backward or sideways transition exists.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from crosswalk.config import BatchSettings
from crosswalk.models.products import CompetitorProduct
from crosswalk.models.results import StandardizedMatchResult


class BatchStatus(str, Enum):
    """Batch job lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


_ALLOWED_TRANSITIONS = {
    BatchStatus.PENDING: {BatchStatus.RUNNING, BatchStatus.CANCELLED},
    BatchStatus.RUNNING: {BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED},
}


def can_transition(current: BatchStatus, new: BatchStatus) -> bool:
    """Whether a job may move from ``current`` to ``new``."""
    return new in _ALLOWED_TRANSITIONS.get(current, set())


class BatchOptions(BaseModel):
    """Per-job scheduling options.

    Attributes:
        concurrency: Maximum resolutions running at once
        timeout_ms: Wall-clock budget per item attempt
        retry_attempts: Retries after the first failed attempt
        retry_delay_ms: Base delay for exponential backoff between retries
        skip_on_error: Continue the batch when an item finally fails
    """

    concurrency: int = Field(default=3, ge=1, le=64)
    timeout_ms: int = Field(default=30000, ge=1)
    retry_attempts: int = Field(default=3, ge=0, le=10)
    retry_delay_ms: int = Field(default=1000, ge=0)
    skip_on_error: bool = True

    @classmethod
    def from_settings(cls, batch_settings: BatchSettings, **overrides: Any) -> "BatchOptions":
        values = {
            "concurrency": batch_settings.concurrency,
            "timeout_ms": batch_settings.timeout_ms,
            "retry_attempts": batch_settings.retry_attempts,
            "retry_delay_ms": batch_settings.retry_delay_ms,
            "skip_on_error": batch_settings.skip_on_error,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class BatchItem(BaseModel):
    """A competitor queued for resolution, with the id results correlate on."""

    item_id: str
    competitor: CompetitorProduct


class BatchProgress(BaseModel):
    """Progress counters. ``processed`` never exceeds ``total``."""

    processed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    current_item: Optional[str] = None
    eta_seconds: Optional[float] = None

    @property
    def percentage(self) -> int:
        if not self.total:
            return 100
        return int(self.processed * 100 / self.total)


class BatchItemResult(BaseModel):
    """Outcome of one batch item, successful or not."""

    item_id: str
    success: bool
    attempts: int = 0
    processing_time_ms: int = 0
    result: Optional[StandardizedMatchResult] = None
    error_code: Optional[str] = None
    error: Optional[str] = None

    @property
    def confidence(self) -> float:
        return self.result.confidence if self.result else 0.0


class BatchItemError(BaseModel):
    """Error recorded against a job for a failed item."""

    item_id: str
    code: str
    message: str
    attempts: int
    recoverable: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BatchJob(BaseModel):
    """A submitted batch and everything the scheduler learned running it."""

    id: str
    items: List[BatchItem] = Field(default_factory=list)
    options: BatchOptions = Field(default_factory=BatchOptions)
    status: BatchStatus = BatchStatus.PENDING
    progress: BatchProgress = Field(default_factory=BatchProgress)
    results: List[BatchItemResult] = Field(default_factory=list)
    errors: List[BatchItemError] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def result_for(self, item_id: str) -> Optional[BatchItemResult]:
        for item_result in self.results:
            if item_result.item_id == item_id:
                return item_result
        return None


class BatchEventType(str, Enum):
    """Notifications emitted by the scheduler."""
    JOB_QUEUED = "job_queued"
    JOB_STARTED = "job_started"
    JOB_PROGRESS = "job_progress"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"


@dataclass
class BatchEvent:
    """A scheduler notification. The job record stays the source of truth."""
    type: BatchEventType
    job_id: str
    status: BatchStatus
    progress: BatchProgress
    item_id: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchStats:
    """Scheduler-wide counters."""
    total_jobs: int = 0
    pending_jobs: int = 0
    active_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    total_items_processed: int = 0
    average_item_time_ms: float = 0.0
