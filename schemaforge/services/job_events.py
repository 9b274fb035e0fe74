"""
Explicit publish/subscribe channel for bulk job lifecycle events.

The scheduler publishes; observers (the websocket progress stream, tests)
subscribe with an optional job filter and consume events from their own
queue. Publishing never blocks the scheduler: a subscriber whose queue is
full loses the event and a warning is logged.
"""

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from schemaforge.models.jobs import Job, JobProgress, JobResult
from schemaforge.utils.dates import utc_now
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)


class JobEventType(str, Enum):
    """Lifecycle notifications emitted by the scheduler."""

    URL_PROCESSED = "url_processed"
    URL_FAILED = "url_failed"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            JobEventType.JOB_COMPLETED,
            JobEventType.JOB_FAILED,
            JobEventType.JOB_CANCELLED,
        )


class JobEvent(BaseModel):
    """A single notification with a progress snapshot."""

    type: JobEventType
    job_id: str
    user_id: str
    status: str
    progress: JobProgress
    result: JobResult | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)

    @classmethod
    def for_job(
        cls,
        event_type: JobEventType,
        job: Job,
        *,
        result: JobResult | None = None,
        error: str | None = None,
    ) -> "JobEvent":
        return cls(
            type=event_type,
            job_id=job.id,
            user_id=job.user_id,
            status=job.status.value,
            progress=job.progress.model_copy(),
            result=result,
            error=error,
        )

    def to_message(self) -> dict[str, Any]:
        """JSON-ready payload for websocket delivery."""
        return self.model_dump(mode="json")


class Subscription:
    """
    Handle returned by ``JobEventBus.subscribe``.

    Iterate it to receive events; use it as a context manager (or call
    ``close``) to detach from the bus.
    """

    def __init__(self, bus: "JobEventBus", job_id: str | None, maxsize: int) -> None:
        self._bus = bus
        self.job_id = job_id
        self.queue: asyncio.Queue[JobEvent] = asyncio.Queue(maxsize=maxsize)

    def matches(self, event: JobEvent) -> bool:
        return self.job_id is None or self.job_id == event.job_id

    async def get(self) -> JobEvent:
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[JobEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[JobEvent]:
        while True:
            yield await self.queue.get()


class JobEventBus:
    """
    Fan-out of job events to subscribers.

    Usage:
        bus = JobEventBus()
        with bus.subscribe(job_id) as events:
            async for event in events:
                if event.type.is_terminal:
                    break
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self._subscribers: list[Subscription] = []
        self._queue_size = queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, job_id: str | None = None) -> Subscription:
        subscription = Subscription(self, job_id, self._queue_size)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: JobEvent) -> int:
        """
        Deliver an event to every matching subscriber.

        Returns:
            Number of subscribers that received the event
        """
        delivered = 0
        for subscription in list(self._subscribers):
            if not subscription.matches(event):
                continue
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping job event for slow subscriber",
                    job_id=event.job_id,
                    event_type=event.type.value,
                )
        return delivered
