"""
Repository pattern for projects, their draft ledger and autosave states.

All methods take an ``AsyncSession`` so the caller owns the transaction
boundary (``get_session()`` commits on success). Lookups are scoped by
owner: a row owned by somebody else is reported exactly like a missing one.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schemaforge.core.history import DEFAULT_HISTORY_LIMIT, Draft, VersionHistory
from schemaforge.database.models import AutosaveState, Project, ProjectStatus
from schemaforge.utils.dates import ensure_utc, utc_now
from schemaforge.utils.exceptions import (
    AutosaveNotFoundError,
    DatabaseError,
    ProjectNotFoundError,
    StaleAutosaveError,
    VersionConflictError,
    VersionNotFoundError,
)
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

STALE_AFTER_HOURS = 24


class ProjectRepository:
    """
    Repository for projects and their version history.

    The ledger lives in JSON columns; every mutation goes through
    ``VersionHistory`` and is written back by reassigning the columns.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        owner_id: str,
        project_name: str,
        target_url: str,
        target_keywords: list[str] | None = None,
        autosave_enabled: bool = True,
    ) -> Project:
        """
        Create a project in DRAFT status with an empty history.

        Raises:
            DatabaseError: If the insert fails
        """
        try:
            project = Project(
                id=str(uuid4()),
                owner_id=owner_id,
                project_name=project_name,
                target_url=target_url,
                target_keywords=list(target_keywords or []),
                status=ProjectStatus.DRAFT,
                draft_history=[],
                autosave_enabled=autosave_enabled,
            )
            session.add(project)
            await session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to create project", error=str(e))
            raise DatabaseError(
                f"Failed to create project: {e}", operation="insert", table="projects"
            ) from e

        logger.info("Project created", project_id=project.id, owner_id=owner_id)
        return project

    @staticmethod
    async def get_or_none(
        session: AsyncSession, project_id: str, owner_id: str
    ) -> Project | None:
        result = await session.execute(
            select(Project).where(Project.id == project_id, Project.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get(session: AsyncSession, project_id: str, owner_id: str) -> Project:
        """
        Raises:
            ProjectNotFoundError: Absent or owned by another user
        """
        project = await ProjectRepository.get_or_none(session, project_id, owner_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    @staticmethod
    async def list_by_owner(
        session: AsyncSession,
        owner_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Project], int]:
        """
        Page through a user's projects, newest first.

        Returns:
            (projects on the page, total count)
        """
        total = await session.scalar(
            select(func.count(Project.id)).where(Project.owner_id == owner_id)
        )
        result = await session.execute(
            select(Project)
            .where(Project.owner_id == owner_id)
            .order_by(Project.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(result.scalars().all()), total or 0

    @staticmethod
    async def delete(session: AsyncSession, project_id: str, owner_id: str) -> None:
        """Delete a project; its autosave states cascade."""
        project = await ProjectRepository.get(session, project_id, owner_id)
        await session.delete(project)
        await session.flush()
        logger.info("Project deleted", project_id=project_id, owner_id=owner_id)

    @staticmethod
    def load_history(project: Project, limit: int = DEFAULT_HISTORY_LIMIT) -> VersionHistory:
        return VersionHistory.from_records(
            project.draft_history, project.current_draft, limit=limit
        )

    @staticmethod
    def store_history(project: Project, history: VersionHistory) -> None:
        # Reassign so SQLAlchemy sees the JSON columns as dirty
        project.draft_history = history.to_records()
        project.current_draft = history.current.to_record() if history.current else None

    @staticmethod
    async def add_version(
        session: AsyncSession,
        project: Project,
        content: Any,
        *,
        author: str | None = None,
        changes: list[str] | None = None,
        tags: list[str] | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> Draft:
        """
        Append a draft version and make it current.

        A COMPLETE project goes back to DRAFT; ``last_autosave_at`` is stamped.
        """
        history = ProjectRepository.load_history(project, limit)
        draft = history.add_version(content, author=author, changes=changes, tags=tags)
        ProjectRepository.store_history(project, history)

        if project.status is ProjectStatus.COMPLETE:
            project.status = ProjectStatus.DRAFT
        project.last_autosave_at = draft.created_at

        await session.flush()
        logger.debug(
            "Draft version added",
            project_id=project.id,
            version=draft.version,
            history_size=len(history),
        )
        return draft

    @staticmethod
    async def restore_version(
        session: AsyncSession,
        project: Project,
        version: int,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> Draft:
        """
        Copy a snapshot into ``current_draft`` and set status DRAFT.

        Raises:
            VersionNotFoundError: Version not in history
        """
        history = ProjectRepository.load_history(project, limit)
        if not history.restore(version):
            raise VersionNotFoundError(project.id, version)

        ProjectRepository.store_history(project, history)
        project.status = ProjectStatus.DRAFT
        await session.flush()

        logger.info("Draft version restored", project_id=project.id, version=version)
        return history.current

    @staticmethod
    async def tag_version(
        session: AsyncSession,
        project: Project,
        version: int,
        tags: list[str],
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> Draft:
        """
        Merge tags into a version (idempotent).

        Raises:
            VersionNotFoundError: Version not in history
        """
        history = ProjectRepository.load_history(project, limit)
        if not history.tag(version, tags):
            raise VersionNotFoundError(project.id, version)

        ProjectRepository.store_history(project, history)
        await session.flush()
        return history.get(version)


class AutosaveRepository:
    """
    Repository for the single current autosave of a (project, owner) pair.

    Two write paths with different version rules:
        - manual save: the caller's explicit version is stored as given
        - autosave ping: ``version + 1`` (a new row starts at 1)
    """

    @staticmethod
    async def get(
        session: AsyncSession, project_id: str, owner_id: str
    ) -> AutosaveState | None:
        result = await session.execute(
            select(AutosaveState).where(
                AutosaveState.project_id == project_id,
                AutosaveState.owner_id == owner_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_or_new(
        session: AsyncSession, project_id: str, owner_id: str
    ) -> AutosaveState:
        state = await AutosaveRepository.get(session, project_id, owner_id)
        if state is None:
            state = AutosaveState(
                id=str(uuid4()),
                project_id=project_id,
                owner_id=owner_id,
                version=0,
                save_frequency=30,
                is_recoverable=True,
                recovery_token=secrets.token_hex(32),
                last_saved_at=utc_now(),
            )
            session.add(state)
        return state

    @staticmethod
    async def save(
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        content: Any,
        *,
        explicit_version: int | None = None,
        expected_version: int | None = None,
        client_metadata: dict[str, Any] | None = None,
    ) -> AutosaveState:
        """
        Upsert the current draft.

        Args:
            explicit_version: Manual save path; stored as given
            expected_version: Optional precondition on the stored version
            client_metadata: user_agent / ip_address / device_type / browser

        Raises:
            VersionConflictError: ``expected_version`` is not the stored version
        """
        existing = await AutosaveRepository.get(session, project_id, owner_id)
        current_version = existing.version if existing is not None else 0

        if expected_version is not None and expected_version != current_version:
            logger.info(
                "Autosave rejected on version conflict",
                project_id=project_id,
                expected_version=expected_version,
                current_version=current_version,
            )
            raise VersionConflictError(expected_version, current_version)

        if existing is None:
            state = await AutosaveRepository._get_or_new(session, project_id, owner_id)
        else:
            state = existing

        now = utc_now()
        if existing is not None:
            previous = ensure_utc(existing.last_saved_at)
            if now <= previous:
                now = previous + timedelta(microseconds=1)

        state.draft_content = content
        state.version = explicit_version if explicit_version is not None else current_version + 1
        state.last_saved_at = now
        if client_metadata is not None:
            state.client_metadata = dict(client_metadata)

        await session.flush()
        logger.debug(
            "Autosave written",
            project_id=project_id,
            version=state.version,
            manual=explicit_version is not None,
        )
        return state

    @staticmethod
    def _check_recoverable(
        state: AutosaveState | None,
        project_id: str | None,
        stale_hours: int,
    ) -> AutosaveState:
        if state is None or state.draft_content is None or not state.is_recoverable:
            raise AutosaveNotFoundError(project_id)
        if state.is_stale(stale_hours):
            raise StaleAutosaveError(project_id, stale_hours)
        return state

    @staticmethod
    async def recover(
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        stale_hours: int = STALE_AFTER_HOURS,
    ) -> AutosaveState:
        """
        Return the autosave if it may still be recovered.

        Raises:
            AutosaveNotFoundError: Absent, empty or not recoverable
            StaleAutosaveError: Last save older than ``stale_hours``
        """
        state = await AutosaveRepository.get(session, project_id, owner_id)
        return AutosaveRepository._check_recoverable(state, project_id, stale_hours)

    @staticmethod
    async def recover_by_token(
        session: AsyncSession,
        token: str,
        owner_id: str,
        stale_hours: int = STALE_AFTER_HOURS,
    ) -> AutosaveState:
        """Same rules as ``recover``, keyed by the recovery token."""
        result = await session.execute(
            select(AutosaveState).where(
                AutosaveState.recovery_token == token,
                AutosaveState.owner_id == owner_id,
            )
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise AutosaveNotFoundError()
        return AutosaveRepository._check_recoverable(state, state.project_id, stale_hours)

    @staticmethod
    async def clear(session: AsyncSession, project_id: str, owner_id: str) -> None:
        """
        Hard-delete the autosave.

        Raises:
            AutosaveNotFoundError: Nothing to delete
        """
        state = await AutosaveRepository.get(session, project_id, owner_id)
        if state is None:
            raise AutosaveNotFoundError(project_id)

        await session.delete(state)
        await session.flush()
        logger.info("Autosave cleared", project_id=project_id, owner_id=owner_id)

    @staticmethod
    async def update_settings(
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        *,
        save_frequency: int,
        is_recoverable: bool,
    ) -> AutosaveState:
        """Upsert settings only; content and version are left alone."""
        state = await AutosaveRepository._get_or_new(session, project_id, owner_id)
        state.save_frequency = save_frequency
        state.is_recoverable = is_recoverable
        await session.flush()
        return state

    @staticmethod
    async def cleanup_stale(
        session: AsyncSession,
        now: datetime | None = None,
        stale_hours: int = STALE_AFTER_HOURS,
    ) -> int:
        """
        Delete every state whose last save is older than ``stale_hours``.

        Returns:
            Number of states deleted
        """
        cutoff = (now or utc_now()) - timedelta(hours=stale_hours)
        result = await session.execute(
            delete(AutosaveState)
            .where(AutosaveState.last_saved_at < cutoff)
            .execution_options(synchronize_session="fetch")
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Cleaned up stale autosave states", count=deleted)
        return deleted
