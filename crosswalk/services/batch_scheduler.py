"""
Batch Scheduler
================

Runs many orchestrator resolutions under a bounded concurrency budget.

Provides:
- Job queue: at most ``max_active_jobs`` jobs execute, the rest wait pending
- Per-job item pool bounded by ``options.concurrency``
- Per-item hard timeout and retry with exponential backoff (tenacity)
- Progress counters with ETA, and observer notifications
- Cooperative cancellation and graceful shutdown

Completion order across items is not submission order; correlate
results by ``item_id``.
"""
import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from crosswalk.config import BatchSettings
from crosswalk.config import batch_settings as default_batch_settings
from crosswalk.errors.exceptions import (
    CrosswalkError,
    ItemTimeoutError,
    ValidationFailed,
    error_code,
    is_recoverable,
)
from crosswalk.models.batch import (
    BatchEvent,
    BatchEventType,
    BatchItem,
    BatchItemError,
    BatchItemResult,
    BatchJob,
    BatchOptions,
    BatchStats,
    BatchStatus,
    can_transition,
)
from crosswalk.models.products import CatalogProduct, CompetitorProduct
from crosswalk.models.results import StandardizedMatchResult
from crosswalk.services.orchestrator import SequentialOrchestrator

logger = structlog.get_logger(__name__)

MAX_RETRY_DELAY_SECONDS = 30.0

BatchListener = Callable[[BatchEvent], Any]
ItemInput = Union[CompetitorProduct, BatchItem, Dict[str, Any]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _should_retry(exc: BaseException) -> bool:
    # Cancellation is a BaseException and must never be retried
    return isinstance(exc, Exception) and is_recoverable(exc)


@dataclass
class RejectedInput:
    """A submitted record that failed validation before scheduling."""
    item_id: str
    error: ValidationFailed


def build_items(inputs: Sequence[ItemInput]) -> Tuple[List[BatchItem], List[RejectedInput]]:
    """Normalize submission inputs into identified batch items.

    Records that fail validation are returned separately so the rest of
    the batch can still run.

    Raises:
        ValidationFailed: On duplicate item ids
    """
    items: List[BatchItem] = []
    rejected: List[RejectedInput] = []
    seen: Set[str] = set()
    for index, value in enumerate(inputs, 1):
        if isinstance(value, BatchItem):
            item_id, item = value.item_id, value
        elif isinstance(value, CompetitorProduct):
            item_id = f"item-{index}"
            item = BatchItem(item_id=item_id, competitor=value)
        else:
            raw = dict(value)
            item_id = str(raw.pop("itemId", None) or raw.pop("item_id", None) or f"item-{index}")
            try:
                item = BatchItem(item_id=item_id, competitor=CompetitorProduct.from_raw(raw))
            except ValidationFailed as e:
                item = None
                rejected.append(RejectedInput(item_id=item_id, error=e))
        if item_id in seen:
            raise ValidationFailed(f"Duplicate item id: {item_id}")
        seen.add(item_id)
        if item is not None:
            items.append(item)
    return items, rejected


class BatchScheduler:
    """
    Concurrency-bounded scheduler for batch matching jobs.

    The job records are the source of truth; events are notifications
    derived from them. Listener failures are logged and never affect a job.

    Usage:
        scheduler = BatchScheduler(orchestrator)
        job = await scheduler.submit(competitors, catalog)
        job = await scheduler.wait_for(job.id)
    """

    def __init__(
        self,
        orchestrator: SequentialOrchestrator,
        settings: Optional[BatchSettings] = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or default_batch_settings
        self._jobs: Dict[str, BatchJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._aborted: Set[str] = set()
        self._listeners: List[BatchListener] = []
        self._job_slots = asyncio.Semaphore(self.settings.max_active_jobs)
        self._progress_lock = asyncio.Lock()
        self._item_time_total_ms = 0
        self._timed_items = 0
        self._closing = False
        self._log = logger.bind(component="BatchScheduler")

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, listener: BatchListener) -> Callable[[], None]:
        """Register ``listener`` for every event; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(
        self,
        event_type: BatchEventType,
        job: BatchJob,
        item_id: Optional[str] = None,
        error: Optional[str] = None,
        **data: Any,
    ) -> None:
        event = BatchEvent(
            type=event_type,
            job_id=job.id,
            status=job.status,
            progress=job.progress.model_copy(),
            item_id=item_id,
            error=error,
            data=data,
        )
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self._log.error(
                    "batch_listener_failed",
                    job_id=job.id,
                    event=event_type.value,
                    error=str(e),
                )

    # =========================================================================
    # Submission and lifecycle
    # =========================================================================

    async def submit(
        self,
        inputs: Sequence[ItemInput],
        catalog: Sequence[CatalogProduct],
        options: Optional[BatchOptions] = None,
        job_id: Optional[str] = None,
    ) -> BatchJob:
        """
        Queue a batch of competitors for matching.

        Args:
            inputs: Competitors, batch items or raw competitor dicts
            catalog: Catalog shared read-only by every item
            options: Scheduling options (defaults from BATCH_* settings)
            job_id: Explicit job id (generated when omitted)

        Returns:
            The pending job record

        Malformed records do not reject the batch: each is recorded as a
        failed item with code VALIDATION_FAILED before the job starts.

        Raises:
            CrosswalkError: If the scheduler is shutting down
            ValidationFailed: If two records share an item id
        """
        if self._closing:
            raise CrosswalkError("Scheduler is shutting down")

        items, rejected = build_items(inputs)
        job = BatchJob(
            id=job_id or f"batch_{uuid.uuid4().hex[:12]}",
            items=items,
            options=options or BatchOptions.from_settings(self.settings),
        )
        job.progress.total = len(items) + len(rejected)
        for entry in rejected:
            self._reject(job, entry)
        self._jobs[job.id] = job

        self._log.info(
            "batch_job_queued",
            job_id=job.id,
            total_items=job.progress.total,
            concurrency=job.options.concurrency,
            timeout_ms=job.options.timeout_ms,
        )
        await self._emit(BatchEventType.JOB_QUEUED, job)
        self._tasks[job.id] = asyncio.create_task(self._run_job(job, list(catalog)))
        return job

    def _reject(self, job: BatchJob, entry: RejectedInput) -> None:
        """Record a record that failed validation as a finished, failed item."""
        error = entry.error
        job.results.append(BatchItemResult(
            item_id=entry.item_id,
            success=False,
            attempts=0,
            error_code=error.code,
            error=error.message,
        ))
        job.errors.append(BatchItemError(
            item_id=entry.item_id,
            code=error.code,
            message=error.message,
            attempts=0,
            recoverable=False,
        ))
        job.progress.processed += 1
        job.progress.failed += 1
        if not job.options.skip_on_error:
            self._aborted.add(job.id)
        self._log.warning(
            "batch_item_rejected",
            job_id=job.id,
            item_id=entry.item_id,
            error_code=error.code,
            error=error.message,
        )

    def _transition(self, job: BatchJob, new_status: BatchStatus) -> bool:
        if not can_transition(job.status, new_status):
            self._log.warning(
                "batch_transition_rejected",
                job_id=job.id,
                current=job.status.value,
                requested=new_status.value,
            )
            return False
        job.status = new_status
        if new_status == BatchStatus.RUNNING:
            job.started_at = _now()
        elif new_status.is_terminal:
            job.completed_at = _now()
        return True

    async def _run_job(self, job: BatchJob, catalog: List[CatalogProduct]) -> None:
        async with self._job_slots:
            if job.status != BatchStatus.PENDING or not self._transition(job, BatchStatus.RUNNING):
                return
            await self._emit(BatchEventType.JOB_STARTED, job)
            self._log.info("batch_job_started", job_id=job.id, total_items=job.progress.total)

            started = time.perf_counter()
            item_slots = asyncio.Semaphore(job.options.concurrency)
            try:
                await asyncio.gather(*(
                    self._run_item(job, item, catalog, item_slots, started)
                    for item in job.items
                ))
            except Exception as e:
                self._log.exception("batch_job_crashed", job_id=job.id, error=str(e))
                self._aborted.add(job.id)

            await self._finish_job(job)

    async def _finish_job(self, job: BatchJob) -> None:
        if job.status == BatchStatus.CANCELLED:
            job.completed_at = _now()
            self._log.info("batch_job_drained", job_id=job.id, processed=job.progress.processed)
            return

        if job.id in self._aborted:
            self._transition(job, BatchStatus.FAILED)
            first_error = job.errors[0].message if job.errors else None
            self._log.error(
                "batch_job_failed",
                job_id=job.id,
                processed=job.progress.processed,
                failed=job.progress.failed,
            )
            await self._emit(BatchEventType.JOB_FAILED, job, error=first_error)
            return

        self._transition(job, BatchStatus.COMPLETED)
        job.progress.current_item = None
        job.progress.eta_seconds = 0.0
        self._log.info(
            "batch_job_completed",
            job_id=job.id,
            succeeded=job.progress.succeeded,
            failed=job.progress.failed,
        )
        await self._emit(BatchEventType.JOB_COMPLETED, job)

    async def cancel(self, job_id: str) -> bool:
        """
        Cancel a job.

        Pending jobs are dropped from the queue before any item runs.
        Running jobs are marked cancelled: in-flight items finish their
        current work, nothing new starts.

        Returns:
            True if the job was cancelled, False if unknown or finished
        """
        job = self._jobs.get(job_id)
        if job is None or not self._transition(job, BatchStatus.CANCELLED):
            return False

        task = self._tasks.get(job_id)
        if job.started_at is None and task is not None:
            task.cancel()

        self._log.info(
            "batch_job_cancelled",
            job_id=job_id,
            processed=job.progress.processed,
            total=job.progress.total,
        )
        await self._emit(BatchEventType.JOB_CANCELLED, job)
        return True

    # =========================================================================
    # Items
    # =========================================================================

    def _should_skip(self, job: BatchJob) -> bool:
        return job.status == BatchStatus.CANCELLED or job.id in self._aborted

    async def _run_item(
        self,
        job: BatchJob,
        item: BatchItem,
        catalog: List[CatalogProduct],
        slots: asyncio.Semaphore,
        job_started: float,
    ) -> None:
        async with slots:
            if self._should_skip(job):
                return
            job.progress.current_item = item.item_id
            log = self._log.bind(job_id=job.id, item_id=item.item_id)

            options = job.options
            attempts = 0
            started = time.perf_counter()
            result: Optional[StandardizedMatchResult] = None
            failure: Optional[BaseException] = None

            retrying = AsyncRetrying(
                stop=stop_after_attempt(options.retry_attempts + 1),
                wait=wait_exponential(
                    multiplier=options.retry_delay_ms / 1000,
                    max=MAX_RETRY_DELAY_SECONDS,
                ),
                retry=retry_if_exception(_should_retry),
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        attempts += 1
                        if attempts > 1:
                            log.info("batch_item_retry", attempt=attempts)
                        result = await self._match_with_timeout(item, catalog, options.timeout_ms, job.id)
            except Exception as e:
                failure = e

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            if failure is None:
                item_result = BatchItemResult(
                    item_id=item.item_id,
                    success=True,
                    attempts=attempts,
                    processing_time_ms=elapsed_ms,
                    result=result,
                )
            else:
                log.warning(
                    "batch_item_failed",
                    attempts=attempts,
                    error_code=error_code(failure),
                    error=str(failure),
                )
                item_result = BatchItemResult(
                    item_id=item.item_id,
                    success=False,
                    attempts=attempts,
                    processing_time_ms=elapsed_ms,
                    error_code=error_code(failure),
                    error=str(failure),
                )

            await self._record(job, item_result, failure, job_started)

    async def _match_with_timeout(
        self,
        item: BatchItem,
        catalog: List[CatalogProduct],
        timeout_ms: int,
        job_id: str,
    ) -> StandardizedMatchResult:
        try:
            return await asyncio.wait_for(
                self.orchestrator.match(item.competitor, catalog, source="batch", session_id=job_id),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise ItemTimeoutError(
                f"Item {item.item_id} exceeded {timeout_ms}ms",
                details={"item_id": item.item_id, "timeout_ms": timeout_ms},
            ) from e

    async def _record(
        self,
        job: BatchJob,
        item_result: BatchItemResult,
        failure: Optional[BaseException],
        job_started: float,
    ) -> None:
        """Fold one finished item into the job's counters atomically."""
        async with self._progress_lock:
            progress = job.progress
            job.results.append(item_result)
            progress.processed = min(progress.processed + 1, progress.total)
            if item_result.success:
                progress.succeeded += 1
                self._item_time_total_ms += item_result.processing_time_ms
                self._timed_items += 1
            else:
                progress.failed += 1
                job.errors.append(BatchItemError(
                    item_id=item_result.item_id,
                    code=item_result.error_code or "UNKNOWN",
                    message=item_result.error or "",
                    attempts=item_result.attempts,
                    recoverable=is_recoverable(failure) if failure else True,
                ))
                if not job.options.skip_on_error:
                    self._aborted.add(job.id)

            elapsed = time.perf_counter() - job_started
            remaining = progress.total - progress.processed
            progress.eta_seconds = round(elapsed / progress.processed * remaining, 3) if progress.processed else None

        await self._emit(
            BatchEventType.JOB_PROGRESS,
            job,
            item_id=item_result.item_id,
            error=item_result.error,
            success=item_result.success,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[BatchJob]:
        return self._jobs.get(job_id)

    def list_jobs(self, status: Optional[BatchStatus] = None) -> List[BatchJob]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at)
        if status is None:
            return jobs
        return [job for job in jobs if job.status == status]

    async def wait_for(self, job_id: str, timeout: Optional[float] = None) -> Optional[BatchJob]:
        """Wait until the job's task finishes (or ``timeout`` elapses)."""
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=timeout)
        return self._jobs.get(job_id)

    def get_stats(self) -> BatchStats:
        jobs = list(self._jobs.values())

        def count(status: BatchStatus) -> int:
            return sum(1 for job in jobs if job.status == status)

        return BatchStats(
            total_jobs=len(jobs),
            pending_jobs=count(BatchStatus.PENDING),
            active_jobs=count(BatchStatus.RUNNING),
            completed_jobs=count(BatchStatus.COMPLETED),
            failed_jobs=count(BatchStatus.FAILED),
            cancelled_jobs=count(BatchStatus.CANCELLED),
            total_items_processed=sum(job.progress.processed for job in jobs),
            average_item_time_ms=(
                self._item_time_total_ms / self._timed_items
                if self._timed_items
                else 0.0
            ),
        )

    def cleanup_old_jobs(self, older_than_hours: Optional[float] = None) -> int:
        """Drop finished jobs older than the TTL. Returns how many were removed."""
        hours = self.settings.job_ttl_hours if older_than_hours is None else older_than_hours
        cutoff = _now() - timedelta(hours=hours)
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status.is_terminal
            and (job.completed_at or job.created_at) < cutoff
            and (job_id not in self._tasks or self._tasks[job_id].done())
        ]
        for job_id in stale:
            del self._jobs[job_id]
            self._tasks.pop(job_id, None)
            self._aborted.discard(job_id)
        if stale:
            self._log.info("batch_jobs_cleaned", removed=len(stale))
        return len(stale)

    async def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        """
        Stop accepting work, drop pending jobs and let running ones drain.

        Running jobs still busy after the grace period are cancelled.
        """
        self._closing = True
        grace = self.settings.shutdown_grace_seconds if grace_seconds is None else grace_seconds

        for job in self.list_jobs(BatchStatus.PENDING):
            await self.cancel(job.id)

        running = [task for task in self._tasks.values() if not task.done()]
        if running:
            self._log.info("batch_shutdown_waiting", running_jobs=len(running), grace_seconds=grace)
            _, still_running = await asyncio.wait(running, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                for job in self.list_jobs(BatchStatus.RUNNING):
                    self._transition(job, BatchStatus.CANCELLED)
                    await self._emit(BatchEventType.JOB_CANCELLED, job)
                self._log.warning("batch_shutdown_forced", cancelled_jobs=len(still_running))

        self._log.info("batch_scheduler_shutdown")
