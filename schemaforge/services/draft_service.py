"""
Draft orchestration shared by the autosave routes and the realtime socket.

Every write goes to both stores in the same session:
    - ``AutosaveRepository`` keeps the single current draft per owner
    - ``ProjectRepository`` appends the snapshot to the project history

Project lookups are owner-scoped; a project owned by somebody else raises
``ProjectNotFoundError`` exactly like a missing one.
"""

from datetime import datetime
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession

from schemaforge.core.config import Settings, get_settings
from schemaforge.core.history import AUTO_TAG, MANUAL_TAG, Draft, VersionHistory
from schemaforge.database.models import AutosaveState, Project
from schemaforge.database.repository import AutosaveRepository, ProjectRepository
from schemaforge.models.drafts import (
    AutosaveStatusView,
    ClientMetadata,
    HistoryResponse,
    RecoveredDraft,
    RecoveryStatusView,
    SettingsView,
)
from schemaforge.utils.dates import ensure_utc
from schemaforge.utils.exceptions import VersionNotFoundError
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)


class DraftService:
    """
    Autosave and version-history operations for one owner's projects.

    Usage:
        service = DraftService()
        async with get_session() as session:
            state, draft = await service.autosave(session, project_id, user_id, content)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.history_limit = settings.draft_history_limit
        self.stale_hours = settings.autosave_stale_hours

    async def _project(self, session: AsyncSession, project_id: str, owner_id: str) -> Project:
        return await ProjectRepository.get(session, project_id, owner_id)

    async def _history(
        self, session: AsyncSession, project_id: str, owner_id: str
    ) -> tuple[Project, VersionHistory]:
        project = await self._project(session, project_id, owner_id)
        return project, ProjectRepository.load_history(project, self.history_limit)

    # ===================
    # Writes
    # ===================

    async def manual_save(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        content: dict[str, Any],
        *,
        version: int | None = None,
        client_metadata: ClientMetadata | None = None,
    ) -> tuple[AutosaveState, Draft]:
        """Explicit save: version stored as given, history tagged ``manual``."""
        project = await self._project(session, project_id, owner_id)
        state = await AutosaveRepository.save(
            session,
            project_id,
            owner_id,
            content,
            explicit_version=version if version is not None else 1,
            client_metadata=client_metadata.model_dump() if client_metadata else None,
        )
        draft = await ProjectRepository.add_version(
            session,
            project,
            content,
            author=owner_id,
            tags=[MANUAL_TAG],
            limit=self.history_limit,
        )
        logger.info(
            "Draft saved",
            project_id=project_id,
            version=state.version,
            draft_version=draft.version,
        )
        return state, draft

    async def autosave(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        content: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> tuple[AutosaveState, Draft]:
        """
        Periodic save: version incremented, history tagged ``auto``.

        Raises:
            ProjectNotFoundError: Project absent or not owned
            VersionConflictError: ``expected_version`` is stale
        """
        project = await self._project(session, project_id, owner_id)
        state = await AutosaveRepository.save(
            session,
            project_id,
            owner_id,
            content,
            expected_version=expected_version,
        )
        draft = await ProjectRepository.add_version(
            session,
            project,
            content,
            author=owner_id,
            tags=[AUTO_TAG],
            limit=self.history_limit,
        )
        return state, draft

    async def restore(
        self, session: AsyncSession, project_id: str, owner_id: str, version: int
    ) -> Draft:
        project = await self._project(session, project_id, owner_id)
        return await ProjectRepository.restore_version(
            session, project, version, self.history_limit
        )

    async def tag(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        version: int,
        tags: list[str],
    ) -> Draft:
        project = await self._project(session, project_id, owner_id)
        return await ProjectRepository.tag_version(
            session, project, version, tags, self.history_limit
        )

    async def clear(self, session: AsyncSession, project_id: str, owner_id: str) -> None:
        await self._project(session, project_id, owner_id)
        await AutosaveRepository.clear(session, project_id, owner_id)

    async def update_settings(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        *,
        autosave_enabled: bool | None = None,
        save_frequency: int | None = None,
    ) -> SettingsView:
        """Project toggle plus autosave interval; recovery follows the toggle."""
        project = await self._project(session, project_id, owner_id)
        if autosave_enabled is not None:
            project.autosave_enabled = autosave_enabled

        current = await AutosaveRepository.get(session, project_id, owner_id)
        frequency = save_frequency or (current.save_frequency if current else 30)

        state = await AutosaveRepository.update_settings(
            session,
            project_id,
            owner_id,
            save_frequency=frequency,
            is_recoverable=project.autosave_enabled,
        )
        logger.info(
            "Autosave settings updated",
            project_id=project_id,
            autosave_enabled=project.autosave_enabled,
            save_frequency=frequency,
        )
        return SettingsView(
            autosave_enabled=project.autosave_enabled,
            save_frequency=state.save_frequency,
            is_recoverable=state.is_recoverable,
        )

    # ===================
    # Reads
    # ===================

    async def status(
        self, session: AsyncSession, project_id: str, owner_id: str
    ) -> AutosaveStatusView:
        project = await self._project(session, project_id, owner_id)
        state = await AutosaveRepository.get(session, project_id, owner_id)
        if state is None:
            return AutosaveStatusView(has_autosave=False)

        return AutosaveStatusView(
            has_autosave=True,
            last_saved_at=ensure_utc(state.last_saved_at),
            version=state.version,
            is_stale=state.is_stale(self.stale_hours),
            save_frequency=state.save_frequency,
            project_name=project.project_name,
            target_url=project.target_url,
        )

    async def recover(
        self, session: AsyncSession, project_id: str, owner_id: str
    ) -> RecoveredDraft:
        await self._project(session, project_id, owner_id)
        state = await AutosaveRepository.recover(session, project_id, owner_id, self.stale_hours)
        return _recovered(state)

    async def recover_by_token(
        self, session: AsyncSession, token: str, owner_id: str
    ) -> RecoveredDraft:
        state = await AutosaveRepository.recover_by_token(
            session, token, owner_id, self.stale_hours
        )
        return _recovered(state)

    async def recovery_status(
        self, session: AsyncSession, project_id: str, owner_id: str
    ) -> RecoveryStatusView:
        project = await self._project(session, project_id, owner_id)
        state = await AutosaveRepository.get(session, project_id, owner_id)
        history_count = len(project.draft_history or [])

        if state is None:
            return RecoveryStatusView(
                has_autosave=False, can_recover=False, draft_history_count=history_count
            )

        is_stale = state.is_stale(self.stale_hours)
        can_recover = (
            not is_stale and state.is_recoverable and state.draft_content is not None
        )
        return RecoveryStatusView(
            has_autosave=True,
            can_recover=can_recover,
            last_saved_at=ensure_utc(state.last_saved_at),
            version=state.version,
            is_stale=is_stale,
            draft_history_count=history_count,
            metadata=ClientMetadata(**state.client_metadata) if state.client_metadata else None,
            recovery_token=state.recovery_token if can_recover else None,
        )

    async def history(
        self, session: AsyncSession, project_id: str, owner_id: str, limit: int = 10
    ) -> HistoryResponse:
        _, history = await self._history(session, project_id, owner_id)
        return HistoryResponse(
            history=history.recent(limit),
            total=len(history),
            current_version=history.current.version if history.current else None,
        )

    async def compare(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        version1: int,
        version2: int,
    ) -> dict[str, Any]:
        _, history = await self._history(session, project_id, owner_id)
        comparison = history.compare(version1, version2)
        if comparison is None:
            missing = [v for v in (version1, version2) if history.get(v) is None]
            raise VersionNotFoundError(project_id, *missing)
        return comparison

    async def search(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        *,
        tags: list[str] | None = None,
        author: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        content: str | None = None,
    ) -> list[Draft]:
        _, history = await self._history(session, project_id, owner_id)
        return history.search(
            tags=tags, author=author, date_from=date_from, date_to=date_to, content=content
        )

    async def stats(self, session: AsyncSession, project_id: str, owner_id: str) -> dict[str, Any]:
        _, history = await self._history(session, project_id, owner_id)
        return history.stats()

    async def export(
        self,
        session: AsyncSession,
        project_id: str,
        owner_id: str,
        *,
        format: Literal["json", "csv"] = "json",
        versions: list[int] | None = None,
        include_content: bool = True,
    ) -> list[dict[str, Any]]:
        _, history = await self._history(session, project_id, owner_id)
        return history.export(format=format, versions=versions, include_content=include_content)


def _recovered(state: AutosaveState) -> RecoveredDraft:
    return RecoveredDraft(
        project_id=state.project_id,
        draft_content=state.draft_content,
        version=state.version,
        last_saved_at=ensure_utc(state.last_saved_at),
    )
