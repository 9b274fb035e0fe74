"""
Pydantic models for bulk schema-generation jobs.

``Job`` is the in-memory record owned by the job store and mutated by the
batch scheduler. The request/response models below it define the bulk API
contract.

Lifecycle: PENDING -> PROCESSING -> COMPLETED / FAILED / CANCELLED
(PENDING -> CANCELLED is allowed as well).
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from schemaforge.utils.dates import utc_now


class JobStatus(str, Enum):
    """Status of a bulk processing job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """No transition leaves a terminal state."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """Active jobs count against the per-user quota."""
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)


class ResultStatus(str, Enum):
    """Outcome of a single URL inside a job."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobOptions(BaseModel):
    """
    Options captured when a job is created. Immutable afterwards.

    Durations are in milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    max_concurrency: int = Field(default=3, ge=1, description="URLs dispatched per chunk")
    delay_between_requests: int = Field(
        default=1000, ge=0, description="Pause between chunks in ms"
    )
    timeout: int = Field(default=30000, gt=0, description="Per-URL deadline in ms")
    skip_duplicates: bool = Field(default=True, description="Drop repeated URLs on intake")
    target_keywords: list[str] | None = Field(
        default=None, description="Keywords forwarded to schema generation"
    )
    schema_types: list[str] | None = Field(
        default=None, description="Preferred schema.org types"
    )


class JobProgress(BaseModel):
    """Counters for a job; only ever increase."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    current: int = 0


class JobResult(BaseModel):
    """Outcome of one URL. Appended to ``Job.results`` in completion order."""

    url: str
    status: ResultStatus
    schema_markup: dict[str, Any] | None = Field(
        default=None, description="Generated JSON-LD (on success)"
    )
    schema_type: str | None = Field(default=None, description="@type of the generated schema")
    error: str | None = Field(default=None, description="Error message (on failure)")
    processing_time_ms: int = Field(default=0, ge=0)
    finished_at: datetime = Field(default_factory=utc_now)


class Job(BaseModel):
    """
    One bulk processing request and its mutable progress state.

    Invariants:
        progress.completed + progress.failed <= progress.total
        len(results) == progress.completed + progress.failed
    """

    id: str
    user_id: str
    urls: tuple[str, ...]
    status: JobStatus = JobStatus.PENDING
    progress: JobProgress
    results: list[JobResult] = Field(default_factory=list)
    options: JobOptions = Field(default_factory=JobOptions)
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def processing_time_ms(self) -> float | None:
        """Wall time between start and terminal transition."""
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def record_result(self, result: JobResult) -> None:
        """Append a URL outcome and bump the matching counter."""
        self.results.append(result)
        if result.status is ResultStatus.SUCCESS:
            self.progress.completed += 1
        else:
            self.progress.failed += 1

    def final_status(self) -> JobStatus:
        """Status a job reaches once every dispatched URL has resolved."""
        if self.status is JobStatus.CANCELLED:
            return JobStatus.CANCELLED
        if self.progress.completed == 0 and self.progress.failed > 0:
            return JobStatus.FAILED
        return JobStatus.COMPLETED


# ===================
# API contract
# ===================


class BulkJobOptionsRequest(BaseModel):
    """Client-supplied options, bounded to what the providers tolerate."""

    model_config = ConfigDict(extra="forbid")

    max_concurrency: int = Field(default=3, ge=1, le=10)
    delay_between_requests: int = Field(default=1000, ge=0, le=10000)
    timeout: int = Field(default=30000, ge=5000, le=120000)
    skip_duplicates: bool = True
    target_keywords: list[str] | None = Field(default=None, max_length=20)
    schema_types: list[str] | None = Field(default=None, max_length=20)

    def to_options(self) -> JobOptions:
        return JobOptions(**self.model_dump())


class BulkJobRequest(BaseModel):
    """
    Request schema for creating a bulk job.

    Example:
        {
            "urls": ["https://example.com/a", "https://example.com/b"],
            "options": {"max_concurrency": 2, "target_keywords": ["seo"]}
        }
    """

    model_config = ConfigDict(extra="forbid")

    urls: list[str] = Field(min_length=1, description="URLs to process")
    options: BulkJobOptionsRequest = Field(default_factory=BulkJobOptionsRequest)


class JobCreatedResponse(BaseModel):
    """Returned with 201 after a job is created."""

    job_id: str
    status: JobStatus
    total: int
    message: str = "Bulk processing job created successfully"


class JobView(BaseModel):
    """Job state without per-URL results."""

    id: str
    status: JobStatus
    progress: JobProgress
    url_count: int
    options: JobOptions
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        return cls(
            id=job.id,
            status=job.status,
            progress=job.progress.model_copy(),
            url_count=len(job.urls),
            options=job.options,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            error=job.error,
        )


class JobListResponse(BaseModel):
    jobs: list[JobView]
    total: int


class Pagination(BaseModel):
    limit: int
    offset: int
    has_more: bool


class JobResultsResponse(BaseModel):
    """Paginated per-URL results."""

    job_id: str
    status: JobStatus
    total: int = Field(description="Results matching the filter, before pagination")
    results: list[JobResult]
    pagination: Pagination


class BulkStatsResponse(BaseModel):
    """Aggregate statistics over every job in the store."""

    total_jobs: int
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
    average_processing_time: float = Field(description="Mean ms from start to completion")
