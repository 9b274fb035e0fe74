"""
SQLAlchemy ORM models for database tables.

``projects`` holds a user's project together with its draft ledger
(``draft_history`` / ``current_draft`` JSON columns managed by
``VersionHistory``). ``autosave_states`` holds the single current autosave
per (project, owner) pair.

Timestamps are written from Python in UTC so ordering survives SQLite's
second-resolution ``CURRENT_TIMESTAMP``.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from schemaforge.utils.dates import ensure_utc, utc_now


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ProjectStatus(str, PyEnum):
    """
    Status of a schema project.

    Adding a draft version moves a COMPLETE project back to DRAFT.
    """

    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    AUTOSAVE = "autosave"


class Project(Base):
    """
    ORM model for schema projects.

    Attributes:
        id: Unique project identifier (UUID string)
        owner_id: Owning user (authorization boundary)
        project_name: Display name (max 100 chars)
        target_url: Page the schema is generated for
        target_keywords: SEO keywords forwarded to generation
        status: Current project status
        current_draft: Denormalized copy of the draft being edited
        draft_history: Capped list of draft snapshots (oldest first)
        autosave_enabled: Client hint, stored only
        last_autosave_at: When the last version was added
        final_schema_output: Published JSON-LD
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    project_name: Mapped[str] = mapped_column(String(100), nullable=False)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    target_keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, native_enum=False, length=20),
        nullable=False,
        default=ProjectStatus.DRAFT,
    )

    # Draft ledger (JSON columns are reassigned, never mutated in place)
    current_draft: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    draft_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    autosave_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_autosave_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    final_schema_output: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_projects_owner_created", "owner_id", "created_at"),
        Index("ix_projects_status", "status"),
    )

    def __repr__(self) -> str:
        return f"Project(id={self.id!r}, owner_id={self.owner_id!r}, status={self.status!r})"


class AutosaveState(Base):
    """
    ORM model for the current autosave of a (project, owner) pair.

    Attributes:
        draft_content: Opaque JSON being edited
        version: +1 per autosave ping, or the explicit version of a manual save
        last_saved_at: Strictly increasing write timestamp
        save_frequency: Client autosave interval hint in seconds (5-300)
        is_recoverable: Whether recovery may serve this state
        recovery_token: Stable 64-hex-char token for recovery links
        client_metadata: user_agent / ip_address / device_type / browser
    """

    __tablename__ = "autosave_states"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    draft_content: Mapped[Any] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_saved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    save_frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    is_recoverable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    recovery_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    client_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("project_id", "owner_id", name="uq_autosave_project_owner"),
        Index("ix_autosave_states_last_saved_at", "last_saved_at"),
    )

    def __repr__(self) -> str:
        return (
            f"AutosaveState(project_id={self.project_id!r}, owner_id={self.owner_id!r}, "
            f"version={self.version!r})"
        )

    def is_stale(self, stale_after_hours: int = 24, now: datetime | None = None) -> bool:
        """True when the last save is older than the recovery window."""
        age = (now or utc_now()) - ensure_utc(self.last_saved_at)
        return age.total_seconds() > stale_after_hours * 3600
