"""
Batch scheduler for bulk schema generation.

Drives a PENDING job through its URL list with bounded concurrency:

1. URLs are split into contiguous chunks of ``options.max_concurrency``.
2. Each chunk is dispatched at once and fully awaited before the next one
   starts (barrier, not a sliding window). A slow URL delays the next chunk.
3. ``options.delay_between_requests`` ms separates chunks, never after the
   last one.
4. Cancellation is cooperative: checked before every chunk and every URL.
   In-flight calls are awaited and their results recorded.
5. Every per-URL failure (provider error, timeout) becomes a ``failed``
   result. Only an exception escaping the loop itself fails the whole job.

Results are appended in completion order; correlate by ``url``.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from schemaforge.models.jobs import Job, JobResult, JobStatus, ResultStatus
from schemaforge.services.job_events import JobEvent, JobEventBus, JobEventType
from schemaforge.services.job_store import JobStore
from schemaforge.utils.dates import utc_now
from schemaforge.utils.exceptions import (
    CapacityExceededError,
    InvalidStateError,
    JobNotFoundError,
    SchemaGenerationError,
)
from schemaforge.utils.logging import bound_context, get_logger

logger = get_logger(__name__)

TERMINAL_EVENTS = {
    JobStatus.COMPLETED: JobEventType.JOB_COMPLETED,
    JobStatus.FAILED: JobEventType.JOB_FAILED,
    JobStatus.CANCELLED: JobEventType.JOB_CANCELLED,
}

# (url, target_keywords) -> JSON-LD schema
UrlProcessor = Callable[[str, list[str] | None], Awaitable[dict[str, Any]]]


def chunked(items: tuple[str, ...], size: int) -> list[tuple[str, ...]]:
    """Split into contiguous chunks of at most ``size`` items."""
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchScheduler:
    """
    Executes bulk jobs in the background with a global concurrency cap.

    Usage:
        scheduler = BatchScheduler(store, processor, JobEventBus())
        task = scheduler.start(job.id, user_id)
        await task  # or let it run in the background
    """

    def __init__(
        self,
        store: JobStore,
        processor: UrlProcessor,
        events: JobEventBus | None = None,
        *,
        max_concurrent_jobs: int = 5,
    ) -> None:
        self._store = store
        self._processor = processor
        self._events = events or JobEventBus()
        self.max_concurrent_jobs = max_concurrent_jobs
        self._active: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def events(self) -> JobEventBus:
        return self._events

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    def start(self, job_id: str, user_id: str) -> asyncio.Task[None]:
        """
        Transition a job to PROCESSING and run it in a background task.

        Must be called from within a running event loop.

        Raises:
            JobNotFoundError: Job absent or owned by another user
            InvalidStateError: Job is not pending
            CapacityExceededError: Global cap reached; job stays pending
        """
        job = self._store.get(job_id, user_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job.status is not JobStatus.PENDING:
            raise InvalidStateError(
                "Job is not in pending status", current_state=job.status.value
            )

        if len(self._active) >= self.max_concurrent_jobs:
            raise CapacityExceededError(self.max_concurrent_jobs)

        job.status = JobStatus.PROCESSING
        job.started_at = utc_now()
        self._active.add(job.id)

        logger.info(
            "Bulk processing job started",
            job_id=job.id,
            user_id=job.user_id,
            url_count=len(job.urls),
        )

        task = asyncio.create_task(self.run(job), name=f"bulk-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel(self, job_id: str, user_id: str) -> Job:
        """
        Cancel through the store and release the job's capacity slot.

        A running job announces its cancellation when its loop winds down;
        a pending job has no loop, so the terminal event is published here.
        """
        job = self._store.cancel(job_id, user_id)
        was_running = job.id in self._active
        self._active.discard(job.id)
        if not was_running:
            self._events.publish(JobEvent.for_job(JobEventType.JOB_CANCELLED, job))
        return job

    async def run(self, job: Job) -> None:
        """
        Process every chunk of a job, then settle its terminal status.

        Any exception escaping the chunk loop marks the job FAILED, unless the
        job already reached a terminal state.
        """
        with bound_context(job_id=job.id, user_id=job.user_id):
            try:
                await self._process_chunks(job)
                self._finish(job)
            except asyncio.CancelledError:
                self._interrupt(job, "Processing interrupted by server shutdown")
                raise
            except Exception as e:
                logger.exception("Bulk processing job failed", error=str(e))
                self._interrupt(job, str(e) or type(e).__name__)
            finally:
                self._active.discard(job.id)

    async def _process_chunks(self, job: Job) -> None:
        size = job.options.max_concurrency
        chunks = chunked(job.urls, size)
        delay = job.options.delay_between_requests / 1000

        for chunk_index, chunk in enumerate(chunks):
            if job.status is JobStatus.CANCELLED:
                logger.info("Stopping cancelled job", chunk=chunk_index, chunks=len(chunks))
                break

            offset = chunk_index * size
            await asyncio.gather(
                *(self._process_url(job, url, offset + i) for i, url in enumerate(chunk))
            )

            is_last = chunk_index == len(chunks) - 1
            if not is_last and delay > 0 and job.status is not JobStatus.CANCELLED:
                await asyncio.sleep(delay)

    async def _process_url(self, job: Job, url: str, index: int) -> None:
        if job.status is JobStatus.CANCELLED:
            return

        job.progress.current = max(job.progress.current, index + 1)
        timeout = job.options.timeout / 1000
        started = time.perf_counter()

        try:
            schema = await asyncio.wait_for(
                self._processor(url, job.options.target_keywords),
                timeout=timeout,
            )
            if not isinstance(schema, dict):
                raise SchemaGenerationError(
                    "Schema generation returned no JSON-LD object", url=url
                )
        except TimeoutError:
            result = JobResult(
                url=url,
                status=ResultStatus.FAILED,
                error=f"Timed out after {job.options.timeout}ms",
                processing_time_ms=_elapsed_ms(started),
            )
        except Exception as e:
            result = JobResult(
                url=url,
                status=ResultStatus.FAILED,
                error=str(e) or type(e).__name__,
                processing_time_ms=_elapsed_ms(started),
            )
        else:
            result = JobResult(
                url=url,
                status=ResultStatus.SUCCESS,
                schema_markup=schema,
                schema_type=_schema_type(schema),
                processing_time_ms=_elapsed_ms(started),
            )

        job.record_result(result)

        if result.status is ResultStatus.SUCCESS:
            logger.debug("URL processed in bulk job", url=url, schema_type=result.schema_type)
            self._events.publish(JobEvent.for_job(JobEventType.URL_PROCESSED, job, result=result))
        else:
            logger.warning("URL failed in bulk job", url=url, error=result.error)
            self._events.publish(JobEvent.for_job(JobEventType.URL_FAILED, job, result=result))

    def _finish(self, job: Job) -> None:
        job.status = job.final_status()
        if job.completed_at is None or job.status is not JobStatus.CANCELLED:
            job.completed_at = utc_now()
        self._active.discard(job.id)

        logger.info(
            "Bulk processing job finished",
            status=job.status.value,
            completed=job.progress.completed,
            failed=job.progress.failed,
            total=job.progress.total,
        )
        self._events.publish(JobEvent.for_job(TERMINAL_EVENTS[job.status], job))

    def _interrupt(self, job: Job, error: str) -> None:
        """Fail a job whose loop broke off; a terminal status is kept as is."""
        self._active.discard(job.id)
        if job.is_terminal:
            logger.info("Bulk processing job stopped", status=job.status.value)
            event = JobEvent.for_job(TERMINAL_EVENTS[job.status], job)
        else:
            job.status = JobStatus.FAILED
            job.error = error
            job.completed_at = utc_now()
            event = JobEvent.for_job(JobEventType.JOB_FAILED, job, error=error)
        try:
            self._events.publish(event)
        except Exception as e:
            logger.error("Failed to publish job failure", error=str(e))

    async def shutdown(self) -> None:
        """Cancel running jobs (application shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Bulk scheduler stopped", interrupted_jobs=len(tasks))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _schema_type(schema: dict[str, Any] | None) -> str | None:
    if not isinstance(schema, dict):
        return None
    schema_type = schema.get("@type")
    if isinstance(schema_type, list):
        return ",".join(str(t) for t in schema_type)
    return str(schema_type) if schema_type is not None else None
