"""
Bulk schema-generation API routes.

Provides endpoints for:
- POST /bulk/jobs - Create a bulk job
- POST /bulk/jobs/{job_id}/start - Start processing in the background
- POST /bulk/jobs/{job_id}/cancel - Cancel a pending or processing job
- GET /bulk/jobs/{job_id} - Get job status and progress
- GET /bulk/jobs - List the caller's jobs
- GET /bulk/jobs/{job_id}/results - Paginated per-URL results
- GET /bulk/stats - Aggregate statistics
- POST /bulk/cleanup - Purge expired jobs (admin)

Start and cancel report every store error, "not found" included, as 400.
"""

from fastapi import APIRouter, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.dependencies import AdminKeyDep, CurrentUserDep, JobStoreDep, SchedulerDep
from schemaforge.models.jobs import (
    BulkJobRequest,
    BulkStatsResponse,
    JobCreatedResponse,
    JobListResponse,
    JobResultsResponse,
    JobStatus,
    JobView,
    Pagination,
    ResultStatus,
)
from schemaforge.models.responses import ApiResponse, ErrorBody, ErrorResponse
from schemaforge.utils.exceptions import JobNotFoundError, SchemaForgeError
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/bulk", tags=["Bulk"])


def _bad_request(exc: SchemaForgeError) -> JSONResponse:
    """Failure envelope with status 400 whatever the error type."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(ErrorResponse(error=ErrorBody(**exc.to_dict()))),
    )


@router.post(
    "/jobs",
    response_model=ApiResponse[JobCreatedResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create bulk job",
    description="Validate the URLs and register a pending job. Invalid URLs are dropped.",
)
async def create_bulk_job(
    request: BulkJobRequest,
    user: CurrentUserDep,
    store: JobStoreDep,
) -> ApiResponse[JobCreatedResponse]:
    """
    Create a bulk job for the caller.

    Raises:
        InvalidInputError: No valid URL or more than the per-job cap (400)
        QuotaExceededError: Too many active jobs for this user (400)
    """
    job = store.create(user.id, request.urls, request.options.to_options())
    created = JobCreatedResponse(job_id=job.id, status=job.status, total=job.progress.total)
    return ApiResponse(data=created, message=created.message)


@router.post(
    "/jobs/{job_id}/start",
    response_model=ApiResponse[JobView],
    summary="Start bulk job",
)
async def start_bulk_job(
    job_id: str,
    user: CurrentUserDep,
    store: JobStoreDep,
    scheduler: SchedulerDep,
) -> ApiResponse[JobView] | JSONResponse:
    """Move a pending job to processing; URLs are handled in the background."""
    try:
        scheduler.start(job_id, user.id)
    except SchemaForgeError as e:
        logger.info("Bulk job start rejected", job_id=job_id, error=e.message)
        return _bad_request(e)

    job = store.get(job_id, user.id)
    return ApiResponse(data=JobView.from_job(job), message="Bulk processing started")


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=ApiResponse[JobView],
    summary="Cancel bulk job",
)
async def cancel_bulk_job(
    job_id: str,
    user: CurrentUserDep,
    scheduler: SchedulerDep,
) -> ApiResponse[JobView] | JSONResponse:
    """
    Cancel a job. URLs already in flight finish and are still recorded.
    """
    try:
        job = scheduler.cancel(job_id, user.id)
    except SchemaForgeError as e:
        logger.info("Bulk job cancel rejected", job_id=job_id, error=e.message)
        return _bad_request(e)

    return ApiResponse(data=JobView.from_job(job), message="Job cancelled successfully")


@router.get(
    "/jobs/{job_id}",
    response_model=ApiResponse[JobView],
    summary="Get bulk job",
)
async def get_bulk_job(
    job_id: str,
    user: CurrentUserDep,
    store: JobStoreDep,
) -> ApiResponse[JobView]:
    job = store.get(job_id, user.id)
    if job is None:
        raise JobNotFoundError(job_id)
    return ApiResponse(data=JobView.from_job(job))


@router.get(
    "/jobs",
    response_model=ApiResponse[JobListResponse],
    summary="List bulk jobs",
    description="The caller's jobs, newest first.",
)
async def list_bulk_jobs(
    user: CurrentUserDep,
    store: JobStoreDep,
    limit: int = Query(default=10, ge=1, le=50, description="Maximum jobs to return"),
    status_filter: JobStatus | None = Query(
        default=None, alias="status", description="Filter by job status"
    ),
) -> ApiResponse[JobListResponse]:
    jobs = store.list_by_user(user.id, limit=limit, status=status_filter)
    return ApiResponse(
        data=JobListResponse(jobs=[JobView.from_job(job) for job in jobs], total=len(jobs))
    )


@router.get(
    "/jobs/{job_id}/results",
    response_model=ApiResponse[JobResultsResponse],
    summary="Get bulk job results",
)
async def get_bulk_job_results(
    job_id: str,
    user: CurrentUserDep,
    store: JobStoreDep,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status_filter: ResultStatus | None = Query(default=None, alias="status"),
) -> ApiResponse[JobResultsResponse]:
    """
    Per-URL results in completion order.

    ``total`` counts the results matching the status filter, before paging.
    """
    job = store.get(job_id, user.id)
    if job is None:
        raise JobNotFoundError(job_id)

    results = job.results
    if status_filter is not None:
        results = [r for r in results if r.status is status_filter]

    page = results[offset : offset + limit]
    return ApiResponse(
        data=JobResultsResponse(
            job_id=job.id,
            status=job.status,
            total=len(results),
            results=page,
            pagination=Pagination(
                limit=limit,
                offset=offset,
                has_more=offset + limit < len(results),
            ),
        )
    )


@router.get(
    "/stats",
    response_model=ApiResponse[BulkStatsResponse],
    summary="Bulk processing statistics",
)
async def get_bulk_stats(
    _user: CurrentUserDep,
    store: JobStoreDep,
    scheduler: SchedulerDep,
) -> ApiResponse[BulkStatsResponse]:
    stats = store.stats(scheduler.active_count)
    return ApiResponse(data=BulkStatsResponse(**stats))


@router.post(
    "/cleanup",
    response_model=ApiResponse[dict[str, int]],
    summary="Purge expired jobs",
    description="Remove finished jobs past the retention window. Requires the admin key.",
)
async def cleanup_bulk_jobs(
    _user: CurrentUserDep,
    _api_key: AdminKeyDep,
    store: JobStoreDep,
) -> ApiResponse[dict[str, int]]:
    removed = store.sweep_expired()
    logger.info("Bulk job cleanup requested", jobs_removed=removed)
    return ApiResponse(data={"jobs_removed": removed}, message="Cleanup completed")
