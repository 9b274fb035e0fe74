"""
Pydantic schemas for projects, autosave and draft history endpoints.

Draft content is an opaque JSON object: it is validated as an object and
otherwise passed through untouched.
"""

from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemaforge.core.history import Draft
from schemaforge.database.models import AutosaveState, Project, ProjectStatus
from schemaforge.utils.dates import ensure_utc


class ClientMetadata(BaseModel):
    """Client fingerprint captured on manual saves."""

    user_agent: str | None = None
    ip_address: str | None = None
    device_type: str | None = None
    browser: str | None = None


# ===================
# Projects
# ===================


class ProjectCreateRequest(BaseModel):
    """
    Request schema for creating a project.

    Example:
        {"project_name": "Blog", "target_url": "https://example.com/blog"}
    """

    model_config = ConfigDict(extra="forbid")

    project_name: str = Field(min_length=1, max_length=100)
    target_url: str = Field(description="Page the schema is generated for")
    target_keywords: list[str] = Field(default_factory=list, max_length=20)
    autosave_enabled: bool = True

    @field_validator("project_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("project_name must not be blank")
        return v

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("target_url must be an absolute http(s) URL")
        return v.strip()


class ProjectView(BaseModel):
    """Project with its current draft; history is served separately."""

    id: str
    project_name: str
    target_url: str
    target_keywords: list[str]
    status: ProjectStatus
    autosave_enabled: bool
    current_draft: Draft | None = None
    history_count: int = 0
    last_autosave_at: datetime | None = None
    final_schema_output: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, project: Project) -> "ProjectView":
        return cls(
            id=project.id,
            project_name=project.project_name,
            target_url=project.target_url,
            target_keywords=list(project.target_keywords or []),
            status=project.status,
            autosave_enabled=project.autosave_enabled,
            current_draft=Draft.from_record(project.current_draft)
            if project.current_draft
            else None,
            history_count=len(project.draft_history or []),
            last_autosave_at=ensure_utc(project.last_autosave_at),
            final_schema_output=project.final_schema_output,
            created_at=ensure_utc(project.created_at),
            updated_at=ensure_utc(project.updated_at),
        )


class ProjectListResponse(BaseModel):
    projects: list[ProjectView]
    total: int
    page: int
    limit: int


# ===================
# Autosave
# ===================


class SaveDraftRequest(BaseModel):
    """Manual save. ``version`` is stored as given when present."""

    draft_content: dict[str, Any]
    version: int | None = Field(default=None, ge=1)


class AutosaveRequest(BaseModel):
    """
    Periodic autosave ping.

    ``expected_version`` turns the write into a compare-and-set: it is
    rejected with 409 when another writer moved the version.
    """

    draft_content: dict[str, Any]
    expected_version: int | None = Field(default=None, ge=0)


class SettingsRequest(BaseModel):
    autosave_enabled: bool | None = None
    save_frequency: int | None = Field(default=None, ge=5, le=300)


class TagRequest(BaseModel):
    tags: list[str] = Field(min_length=1, max_length=20)


class AutosaveStateView(BaseModel):
    """Stored autosave as returned by a manual save."""

    project_id: str
    version: int
    last_saved_at: datetime
    save_frequency: int
    is_recoverable: bool
    client_metadata: ClientMetadata | None = None

    @classmethod
    def from_model(cls, state: AutosaveState) -> "AutosaveStateView":
        return cls(
            project_id=state.project_id,
            version=state.version,
            last_saved_at=ensure_utc(state.last_saved_at),
            save_frequency=state.save_frequency,
            is_recoverable=state.is_recoverable,
            client_metadata=ClientMetadata(**state.client_metadata)
            if state.client_metadata
            else None,
        )


class SaveResult(BaseModel):
    """Acknowledgement of a write; ``draft_version`` is the history entry added."""

    version: int
    saved_at: datetime
    draft_version: int


class AutosaveStatusView(BaseModel):
    has_autosave: bool
    last_saved_at: datetime | None = None
    version: int = 0
    is_stale: bool = False
    save_frequency: int | None = None
    project_name: str | None = None
    target_url: str | None = None


class RecoveredDraft(BaseModel):
    project_id: str
    draft_content: Any
    version: int
    last_saved_at: datetime


class RecoveryStatusView(BaseModel):
    has_autosave: bool
    can_recover: bool
    last_saved_at: datetime | None = None
    version: int = 0
    is_stale: bool = False
    draft_history_count: int = 0
    metadata: ClientMetadata | None = None
    recovery_token: str | None = Field(
        default=None, description="Present only while the autosave can be recovered"
    )


class SettingsView(BaseModel):
    autosave_enabled: bool
    save_frequency: int
    is_recoverable: bool


class HistoryResponse(BaseModel):
    history: list[Draft] = Field(description="Newest first")
    total: int
    current_version: int | None = None


class RestoreResponse(BaseModel):
    version: int
    current_draft: Draft


class TagResponse(BaseModel):
    version: int
    tags: list[str]


class SearchResponse(BaseModel):
    results: list[Draft]
    count: int
    query: dict[str, Any]
