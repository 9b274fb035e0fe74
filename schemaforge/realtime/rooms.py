"""
WebSocket room registry for project collaboration.

Every accepted connection is registered with its user; a connection sits
in at most one room (``project:<id>``) at a time. Broadcasts are JSON
messages of the form ``{"event": <name>, "data": {...}}``. A socket that
fails a send is dropped from the registry.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from schemaforge.core.security import AuthenticatedUser
from schemaforge.utils.dates import utc_now
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)


def project_room(project_id: str) -> str:
    return f"project:{project_id}"


@dataclass
class Connection:
    """A registered socket and the room it joined."""

    websocket: WebSocket
    user: AuthenticatedUser
    room: str | None = None
    connected_at: datetime = field(default_factory=utc_now)


class RoomManager:
    """
    Tracks connections and the rooms they joined.

    Usage:
        rooms = RoomManager()
        await rooms.connect(websocket, user)
        await rooms.join(websocket, project_room(project_id))
        await rooms.broadcast(project_room(project_id), "collaborator-saved", {...},
                              exclude=websocket)
    """

    def __init__(self) -> None:
        self._connections: dict[WebSocket, Connection] = {}
        self._rooms: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user: AuthenticatedUser) -> Connection:
        """Register an already accepted socket."""
        async with self._lock:
            connection = Connection(websocket=websocket, user=user)
            self._connections[websocket] = connection

        logger.info(
            "WebSocket connected",
            user_id=user.id,
            total_connections=len(self._connections),
        )
        return connection

    async def disconnect(self, websocket: WebSocket) -> Connection | None:
        """Forget a socket; returns its connection (with the room it was in)."""
        async with self._lock:
            connection = self._connections.pop(websocket, None)
            if connection is not None and connection.room is not None:
                self._discard(connection.room, websocket)

        if connection is not None:
            logger.info("WebSocket disconnected", user_id=connection.user.id, room=connection.room)
        return connection

    async def join(self, websocket: WebSocket, room: str) -> str | None:
        """
        Move a connection into ``room``.

        Returns:
            The room the connection left, if any
        """
        async with self._lock:
            connection = self._connections[websocket]
            previous = connection.room
            if previous is not None and previous != room:
                self._discard(previous, websocket)
            self._rooms.setdefault(room, set()).add(websocket)
            connection.room = room
        return previous if previous != room else None

    def _discard(self, room: str, websocket: WebSocket) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self._rooms[room]

    def room_of(self, websocket: WebSocket) -> str | None:
        connection = self._connections.get(websocket)
        return connection.room if connection else None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def room_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def send(self, websocket: WebSocket, event: str, data: dict[str, Any]) -> bool:
        """Send one event to one socket. Returns False when the send failed."""
        try:
            await websocket.send_json(jsonable_encoder({"event": event, "data": data}))
            return True
        except Exception as e:
            logger.warning("Failed to send WebSocket message", ws_event=event, error=str(e))
            return False

    async def broadcast(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        *,
        exclude: WebSocket | None = None,
    ) -> int:
        """
        Send an event to every member of ``room`` except ``exclude``.

        Returns:
            Number of sockets the event reached
        """
        async with self._lock:
            targets = [ws for ws in self._rooms.get(room, ()) if ws is not exclude]

        sent = 0
        failed: list[WebSocket] = []
        for websocket in targets:
            if await self.send(websocket, event, data):
                sent += 1
            else:
                failed.append(websocket)

        for websocket in failed:
            await self.disconnect(websocket)

        return sent

    async def close_all(self) -> None:
        """Close every socket (application shutdown)."""
        async with self._lock:
            sockets = list(self._connections)

        for websocket in sockets:
            try:
                await websocket.close(code=1001, reason="Server shutdown")
            except Exception as e:
                logger.warning("Error closing WebSocket", error=str(e))
            await self.disconnect(websocket)

        if sockets:
            logger.info("All WebSocket connections closed", count=len(sockets))
