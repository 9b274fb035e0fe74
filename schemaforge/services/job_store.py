"""
In-memory store for bulk processing jobs.

Authoritative map from job id to ``Job`` plus the derived views the API
needs (by user, by status, aggregate stats). One instance lives on the
application state; tests build their own.

Mutating methods never await, so under a single event loop every
check-then-act (per-user quota, URL cap) runs atomically.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from urllib.parse import urlparse
from uuid import uuid4

from schemaforge.models.jobs import Job, JobOptions, JobProgress, JobStatus
from schemaforge.utils.dates import utc_now
from schemaforge.utils.exceptions import (
    InvalidInputError,
    InvalidStateError,
    JobNotFoundError,
    QuotaExceededError,
)
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")


def filter_valid_urls(urls: Iterable[str], *, deduplicate: bool = True) -> list[str]:
    """
    Keep absolute http(s) URLs, silently dropping everything else.

    Args:
        urls: Raw URLs from the client
        deduplicate: Drop repeats, keeping the first occurrence

    Returns:
        Valid URLs in input order
    """
    valid: list[str] = []
    seen: set[str] = set()

    for raw in urls:
        if not isinstance(raw, str):
            continue
        url = raw.strip()
        try:
            parsed = urlparse(url)
        except ValueError:
            continue
        if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
            continue
        if deduplicate:
            if url in seen:
                continue
            seen.add(url)
        valid.append(url)

    return valid


class JobStore:
    """
    Keyed collection of bulk jobs with ownership-scoped access.

    Usage:
        store = JobStore()
        job = store.create("user-1", ["https://example.com"], JobOptions())
        store.get(job.id, "user-1")
    """

    def __init__(
        self,
        *,
        max_urls_per_job: int = 100,
        max_active_jobs_per_user: int = 3,
        retention: timedelta = timedelta(days=7),
    ) -> None:
        self._jobs: dict[str, Job] = {}
        self.max_urls_per_job = max_urls_per_job
        self.max_active_jobs_per_user = max_active_jobs_per_user
        self.retention = retention

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def create(
        self,
        user_id: str,
        urls: Iterable[str],
        options: JobOptions | None = None,
    ) -> Job:
        """
        Validate URLs and register a new PENDING job.

        Raises:
            InvalidInputError: No valid URL, or more than the per-job cap
            QuotaExceededError: User already has the maximum of active jobs
        """
        options = options or JobOptions()
        valid_urls = filter_valid_urls(urls, deduplicate=options.skip_duplicates)

        if not valid_urls:
            raise InvalidInputError("No valid URLs provided")

        if len(valid_urls) > self.max_urls_per_job:
            raise InvalidInputError(
                f"Too many URLs. Maximum allowed: {self.max_urls_per_job}",
                details={"url_count": len(valid_urls), "limit": self.max_urls_per_job},
            )

        if self.count_active(user_id) >= self.max_active_jobs_per_user:
            raise QuotaExceededError(user_id, self.max_active_jobs_per_user)

        job = Job(
            id=f"bulk_{uuid4().hex}",
            user_id=user_id,
            urls=tuple(valid_urls),
            progress=JobProgress(total=len(valid_urls)),
            options=options,
        )
        self._jobs[job.id] = job

        logger.info(
            "Bulk processing job created",
            job_id=job.id,
            user_id=user_id,
            url_count=len(valid_urls),
        )
        return job

    def get(self, job_id: str, user_id: str) -> Job | None:
        """Return the job if it exists and belongs to ``user_id``."""
        job = self._jobs.get(job_id)
        if job is None or job.user_id != user_id:
            return None
        return job

    def list_by_user(
        self,
        user_id: str,
        limit: int = 10,
        status: JobStatus | None = None,
    ) -> list[Job]:
        """List a user's jobs, newest first, optionally filtered by status."""
        jobs = [job for job in self._jobs.values() if job.user_id == user_id]
        if status is not None:
            jobs = [job for job in jobs if job.status is status]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs[:limit]

    def count_active(self, user_id: str) -> int:
        return sum(
            1 for job in self._jobs.values() if job.user_id == user_id and job.status.is_active
        )

    def cancel(self, job_id: str, user_id: str) -> Job:
        """
        Move a pending or processing job to CANCELLED.

        In-flight URLs of a processing job still finish and are recorded;
        the scheduler stops dispatching new ones.

        Raises:
            JobNotFoundError: Job absent or owned by another user
            InvalidStateError: Job already terminal
        """
        job = self.get(job_id, user_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job.is_terminal:
            raise InvalidStateError(
                f"Cannot cancel a {job.status.value} job",
                current_state=job.status.value,
            )

        job.status = JobStatus.CANCELLED
        job.completed_at = utc_now()

        logger.info("Bulk processing job cancelled", job_id=job_id, user_id=user_id)
        return job

    def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Remove jobs older than the retention window that are not processing.

        Returns:
            Number of jobs removed
        """
        cutoff = (now or utc_now()) - self.retention
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.created_at < cutoff and job.status is not JobStatus.PROCESSING
        ]
        for job_id in expired:
            del self._jobs[job_id]

        if expired:
            logger.info("Cleaned up old bulk processing jobs", count=len(expired))
        return len(expired)

    def stats(self, active_jobs: int) -> dict[str, float | int]:
        """
        Aggregate counts over every stored job.

        Args:
            active_jobs: Jobs currently held by the scheduler
        """
        jobs = list(self._jobs.values())
        completed = [job for job in jobs if job.status is JobStatus.COMPLETED]
        failed = [job for job in jobs if job.status is JobStatus.FAILED]

        durations = [job.processing_time_ms for job in completed]
        durations = [d for d in durations if d is not None]
        average = sum(durations) / len(durations) if durations else 0.0

        return {
            "total_jobs": len(jobs),
            "active_jobs": active_jobs,
            "completed_jobs": len(completed),
            "failed_jobs": len(failed),
            "average_processing_time": round(average, 2),
        }
