"""
Autosave and draft history API routes.

Every route under ``/autosave/project/{project_id}`` requires the caller to
own the project. Recovery refuses autosaves older than the stale window
with 410.
"""

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Query, Request, Response

from api.dependencies import CurrentUserDep, DbSessionDep, DraftServiceDep
from schemaforge.core.history import to_csv
from schemaforge.models.drafts import (
    AutosaveRequest,
    AutosaveStateView,
    AutosaveStatusView,
    ClientMetadata,
    HistoryResponse,
    RecoveredDraft,
    RecoveryStatusView,
    RestoreResponse,
    SaveDraftRequest,
    SaveResult,
    SearchResponse,
    SettingsRequest,
    SettingsView,
    TagRequest,
    TagResponse,
)
from schemaforge.models.responses import ApiResponse
from schemaforge.utils.dates import ensure_utc, parse_iso
from schemaforge.utils.exceptions import AutosaveNotFoundError, InvalidInputError
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/autosave", tags=["Autosave"])


def _client_metadata(request: Request) -> ClientMetadata:
    return ClientMetadata(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        device_type=request.headers.get("sec-ch-ua-platform", "unknown"),
        browser=request.headers.get("sec-ch-ua", "unknown"),
    )


def _parse_date(name: str, value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_iso(value)
    except ValueError as e:
        raise InvalidInputError(
            f"{name} must be an ISO-8601 timestamp", details={name: value}
        ) from e


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _versions(value: str | None) -> list[int] | None:
    items = _split(value)
    if items is None:
        return None
    try:
        return [int(item) for item in items]
    except ValueError as e:
        raise InvalidInputError(
            "versions must be a comma-separated list of integers", details={"versions": value}
        ) from e


# ===================
# Autosave state
# ===================


@router.get(
    "/project/{project_id}/status",
    response_model=ApiResponse[AutosaveStatusView],
    summary="Autosave status",
)
async def get_autosave_status(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[AutosaveStatusView]:
    status = await drafts.status(session, project_id, user.id)
    if not status.has_autosave:
        raise AutosaveNotFoundError(project_id)
    return ApiResponse(data=status)


@router.post(
    "/project/{project_id}/save",
    response_model=ApiResponse[AutosaveStateView],
    summary="Save draft",
    description="Manual save. The version is stored as given and the draft is added to history.",
)
async def save_draft(
    project_id: str,
    body: SaveDraftRequest,
    request: Request,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[AutosaveStateView]:
    state, _ = await drafts.manual_save(
        session,
        project_id,
        user.id,
        body.draft_content,
        version=body.version,
        client_metadata=_client_metadata(request),
    )
    return ApiResponse(
        data=AutosaveStateView.from_model(state), message="Draft saved successfully"
    )


@router.post(
    "/project/{project_id}/autosave",
    response_model=ApiResponse[SaveResult],
    summary="Autosave ping",
    description="Periodic save. Send expected_version to reject concurrent writes with 409.",
)
async def autosave_draft(
    project_id: str,
    body: AutosaveRequest,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[SaveResult]:
    state, draft = await drafts.autosave(
        session,
        project_id,
        user.id,
        body.draft_content,
        expected_version=body.expected_version,
    )
    return ApiResponse(
        data=SaveResult(
            version=state.version,
            saved_at=ensure_utc(state.last_saved_at),
            draft_version=draft.version,
        ),
        message="Autosave completed",
    )


@router.get(
    "/project/{project_id}/recover",
    response_model=ApiResponse[RecoveredDraft],
    summary="Recover autosave",
)
async def recover_draft(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[RecoveredDraft]:
    """
    Raises:
        AutosaveNotFoundError: Nothing recoverable (404)
        StaleAutosaveError: Older than the stale window (410)
    """
    recovered = await drafts.recover(session, project_id, user.id)
    return ApiResponse(data=recovered, message="Draft recovered successfully")


@router.get(
    "/project/{project_id}/recovery-status",
    response_model=ApiResponse[RecoveryStatusView],
    summary="Recovery status",
)
async def get_recovery_status(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[RecoveryStatusView]:
    return ApiResponse(data=await drafts.recovery_status(session, project_id, user.id))


@router.delete(
    "/project/{project_id}/autosave",
    response_model=ApiResponse[None],
    summary="Clear autosave",
)
async def clear_autosave(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[None]:
    await drafts.clear(session, project_id, user.id)
    return ApiResponse(message="Autosave data cleared")


@router.put(
    "/project/{project_id}/settings",
    response_model=ApiResponse[SettingsView],
    summary="Update autosave settings",
)
async def update_autosave_settings(
    project_id: str,
    body: SettingsRequest,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[SettingsView]:
    settings = await drafts.update_settings(
        session,
        project_id,
        user.id,
        autosave_enabled=body.autosave_enabled,
        save_frequency=body.save_frequency,
    )
    return ApiResponse(data=settings, message="Autosave settings updated")


@router.get(
    "/recover/{token}",
    response_model=ApiResponse[RecoveredDraft],
    summary="Recover autosave by token",
)
async def recover_by_token(
    token: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[RecoveredDraft]:
    recovered = await drafts.recover_by_token(session, token, user.id)
    return ApiResponse(data=recovered, message="Draft recovered successfully")


# ===================
# Version history
# ===================


@router.get(
    "/project/{project_id}/history",
    response_model=ApiResponse[HistoryResponse],
    summary="Draft history",
)
async def get_history(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
    limit: int = Query(default=10, ge=1, le=50),
) -> ApiResponse[HistoryResponse]:
    return ApiResponse(data=await drafts.history(session, project_id, user.id, limit))


@router.post(
    "/project/{project_id}/restore/{version}",
    response_model=ApiResponse[RestoreResponse],
    summary="Restore draft version",
)
async def restore_version(
    project_id: str,
    version: int,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[RestoreResponse]:
    draft = await drafts.restore(session, project_id, user.id, version)
    return ApiResponse(
        data=RestoreResponse(version=version, current_draft=draft),
        message=f"Restored to version {version}",
    )


@router.get(
    "/project/{project_id}/compare/{version1}/{version2}",
    response_model=ApiResponse[dict[str, Any]],
    summary="Compare draft versions",
)
async def compare_versions(
    project_id: str,
    version1: int,
    version2: int,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[dict[str, Any]]:
    comparison = await drafts.compare(session, project_id, user.id, version1, version2)
    return ApiResponse(data=comparison)


@router.post(
    "/project/{project_id}/tag/{version}",
    response_model=ApiResponse[TagResponse],
    summary="Tag draft version",
)
async def tag_version(
    project_id: str,
    version: int,
    body: TagRequest,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[TagResponse]:
    draft = await drafts.tag(session, project_id, user.id, version, body.tags)
    return ApiResponse(
        data=TagResponse(version=draft.version, tags=draft.tags), message="Tags added"
    )


@router.get(
    "/project/{project_id}/search",
    response_model=ApiResponse[SearchResponse],
    summary="Search draft history",
    description="All given criteria must match; tags is a comma-separated any-of list.",
)
async def search_history(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
    tags: str | None = Query(default=None, description="Comma-separated tags"),
    author: str | None = Query(default=None),
    date_from: str | None = Query(default=None),
    date_to: str | None = Query(default=None),
    content: str | None = Query(default=None, description="Case-insensitive substring"),
) -> ApiResponse[SearchResponse]:
    query = {
        "tags": _split(tags),
        "author": author,
        "date_from": _parse_date("date_from", date_from),
        "date_to": _parse_date("date_to", date_to),
        "content": content,
    }
    results = await drafts.search(session, project_id, user.id, **query)
    return ApiResponse(
        data=SearchResponse(
            results=results,
            count=len(results),
            query={k: v for k, v in query.items() if v is not None},
        )
    )


@router.get(
    "/project/{project_id}/stats",
    response_model=ApiResponse[dict[str, Any]],
    summary="Draft history statistics",
)
async def get_history_stats(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
) -> ApiResponse[dict[str, Any]]:
    return ApiResponse(data=await drafts.stats(session, project_id, user.id))


@router.get(
    "/project/{project_id}/export",
    response_model=ApiResponse[list[dict[str, Any]]],
    summary="Export draft history",
    description="JSON envelope by default; format=csv returns a CSV attachment.",
)
async def export_history(
    project_id: str,
    user: CurrentUserDep,
    session: DbSessionDep,
    drafts: DraftServiceDep,
    format: Literal["json", "csv"] = Query(default="json"),
    versions: str | None = Query(default=None, description="Comma-separated version numbers"),
    include_content: bool = Query(default=True),
) -> ApiResponse[list[dict[str, Any]]] | Response:
    rows = await drafts.export(
        session,
        project_id,
        user.id,
        format=format,
        versions=_versions(versions),
        include_content=include_content,
    )

    if format == "csv":
        return Response(
            content=to_csv(rows),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="project-{project_id}-versions.csv"'
            },
        )

    return ApiResponse(data=rows)
