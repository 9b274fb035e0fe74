"""
Project API routes.

Projects own the draft history and the autosave state; every lookup is
scoped to the caller.
"""

from fastapi import APIRouter, Query, status

from api.dependencies import CurrentUserDep, DbSessionDep
from schemaforge.database.repository import ProjectRepository
from schemaforge.models.drafts import ProjectCreateRequest, ProjectListResponse, ProjectView
from schemaforge.models.responses import ApiResponse
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post(
    "",
    response_model=ApiResponse[ProjectView],
    status_code=status.HTTP_201_CREATED,
    summary="Create project",
)
async def create_project(
    request: ProjectCreateRequest,
    user: CurrentUserDep,
    session: DbSessionDep,
) -> ApiResponse[ProjectView]:
    project = await ProjectRepository.create(
        session,
        owner_id=user.id,
        project_name=request.project_name,
        target_url=request.target_url,
        target_keywords=request.target_keywords,
        autosave_enabled=request.autosave_enabled,
    )
    return ApiResponse(data=ProjectView.from_model(project), message="Project created")


@router.get(
    "",
    response_model=ApiResponse[ProjectListResponse],
    summary="List projects",
)
async def list_projects(
    user: CurrentUserDep,
    session: DbSessionDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
) -> ApiResponse[ProjectListResponse]:
    projects, total = await ProjectRepository.list_by_owner(session, user.id, page, limit)
    return ApiResponse(
        data=ProjectListResponse(
            projects=[ProjectView.from_model(p) for p in projects],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get(
    "/{project_id}",
    response_model=ApiResponse[ProjectView],
    summary="Get project",
)
async def get_project(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
) -> ApiResponse[ProjectView]:
    project = await ProjectRepository.get(session, project_id, user.id)
    return ApiResponse(data=ProjectView.from_model(project))


@router.delete(
    "/{project_id}",
    response_model=ApiResponse[None],
    summary="Delete project",
    description="Delete a project together with its autosave state.",
)
async def delete_project(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
) -> ApiResponse[None]:
    await ProjectRepository.delete(session, project_id, user.id)
    return ApiResponse(message="Project deleted")
