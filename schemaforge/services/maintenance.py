"""
Periodic sweeps: expired bulk jobs and stale autosave states.

Runs as a background task started in the API lifespan. One failing sweep
is logged and the loop carries on with the next interval.
"""

import asyncio
from datetime import datetime

from schemaforge.database.connection import SessionFactory, get_session
from schemaforge.database.repository import AutosaveRepository
from schemaforge.services.job_store import JobStore
from schemaforge.utils.dates import utc_now
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)


class MaintenanceService:
    """
    Hourly cleanup loop.

    Usage:
        async with MaintenanceService(store, interval=3600) as maintenance:
            ...  # sweeps run in the background
    """

    def __init__(
        self,
        store: JobStore,
        *,
        interval: float = 3600,
        stale_hours: int = 24,
        session_factory: SessionFactory = get_session,
    ) -> None:
        self._store = store
        self._session_factory = session_factory
        self.interval = interval
        self.stale_hours = stale_hours
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> "MaintenanceService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        """
        Run both sweeps immediately.

        Returns:
            Counts of removed jobs and autosave states
        """
        now = now or utc_now()
        jobs_removed = self._store.sweep_expired(now)

        async with self._session_factory() as session:
            autosaves_removed = await AutosaveRepository.cleanup_stale(
                session, now, self.stale_hours
            )

        return {"jobs_removed": jobs_removed, "autosaves_removed": autosaves_removed}

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = await self.run_once()
            except Exception as e:
                logger.exception("Maintenance sweep failed", error=str(e))
            else:
                logger.debug("Maintenance sweep finished", **result)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name="maintenance")
        logger.info("Maintenance loop started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Maintenance loop stopped")
