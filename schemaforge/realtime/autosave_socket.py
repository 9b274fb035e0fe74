"""
Autosave collaboration protocol over one WebSocket.

Messages are JSON objects ``{"event": <name>, "data": {...}}`` in both
directions. A session handles its messages one at a time in arrival order;
sessions of other sockets run independently.

Client events:
    join-project         {project_id}
    trigger-autosave     {project_id, content, expected_version?}
    autosave-status      {project_id, status}
    cursor-move          {project_id, position}
    text-select          {project_id, selection}
    get-autosave-status  {project_id}

Server events:
    joined-project, autosave-complete, autosave-status-update,
    autosave-status-response, user-cursor-move, user-text-select,
    collaborator-saved, user-left, error
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from schemaforge.core.security import AuthenticatedUser
from schemaforge.database.connection import SessionFactory
from schemaforge.database.repository import ProjectRepository
from schemaforge.realtime.rooms import RoomManager, project_room
from schemaforge.services.draft_service import DraftService
from schemaforge.utils.dates import utc_now
from schemaforge.utils.exceptions import SchemaForgeError
from schemaforge.utils.logging import bound_context, get_logger

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[None]]


class AutosaveSocketSession:
    """
    Serves one authenticated socket until it disconnects.

    Usage:
        session = AutosaveSocketSession(websocket, user, rooms, drafts, get_session)
        await session.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        user: AuthenticatedUser,
        rooms: RoomManager,
        drafts: DraftService,
        session_factory: SessionFactory,
    ) -> None:
        self.websocket = websocket
        self.user = user
        self._rooms = rooms
        self._drafts = drafts
        self._session_factory = session_factory
        self._handlers: dict[str, Handler] = {
            "join-project": self.on_join_project,
            "trigger-autosave": self.on_trigger_autosave,
            "autosave-status": self.on_autosave_status,
            "cursor-move": self.on_cursor_move,
            "text-select": self.on_text_select,
            "get-autosave-status": self.on_get_autosave_status,
        }

    async def run(self) -> None:
        await self._rooms.connect(self.websocket, self.user)
        with bound_context(user_id=self.user.id):
            try:
                while True:
                    raw = await self.websocket.receive_text()
                    await self.dispatch(raw)
            except WebSocketDisconnect as e:
                logger.debug("Autosave socket closed by client", code=e.code)
            finally:
                await self._leave()

    async def dispatch(self, raw: str) -> None:
        """Decode one message and run its handler to completion."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self.error("Message is not valid JSON")
            return

        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self.error("Message must be an object with an 'event' field")
            return

        handler = self._handlers.get(message["event"])
        if handler is None:
            await self.error(f"Unknown event: {message['event']}")
            return

        data = message.get("data")
        if isinstance(data, str):
            data = {"project_id": data}
        if not isinstance(data, dict):
            data = {}

        try:
            await handler(data)
        except SchemaForgeError as e:
            await self.error(e.message, event=message["event"], error_type=type(e).__name__)

    # ===================
    # Helpers
    # ===================

    def _sender(self) -> dict[str, Any]:
        return {
            "user_id": self.user.id,
            "user_name": self.user.display_name,
            "timestamp": utc_now(),
        }

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        await self._rooms.send(self.websocket, event, data)

    async def error(self, message: str, **extra: Any) -> None:
        await self.emit("error", {"message": message, **extra})

    async def _joined_room(self, data: dict[str, Any]) -> str | None:
        """Room named by the message, provided this socket joined it."""
        project_id = data.get("project_id")
        room = project_room(str(project_id)) if project_id else None
        if room is None or self._rooms.room_of(self.websocket) != room:
            await self.error("Join the project before sending collaboration events")
            return None
        return room

    async def _leave(self) -> None:
        connection = await self._rooms.disconnect(self.websocket)
        if connection is not None and connection.room is not None:
            await self._rooms.broadcast(connection.room, "user-left", self._sender())

    # ===================
    # Handlers
    # ===================

    async def on_join_project(self, data: dict[str, Any]) -> None:
        project_id = str(data.get("project_id") or "")
        if not project_id:
            await self.error("project_id is required")
            return

        async with self._session_factory() as session:
            project = await ProjectRepository.get_or_none(session, project_id, self.user.id)

        if project is None:
            await self.error("Project not found or access denied")
            return

        previous = await self._rooms.join(self.websocket, project_room(project_id))
        if previous is not None:
            await self._rooms.broadcast(previous, "user-left", self._sender())

        logger.info("Joined project room", project_id=project_id)
        await self.emit(
            "joined-project",
            {"project_id": project_id, "project_name": project.project_name},
        )

    async def on_trigger_autosave(self, data: dict[str, Any]) -> None:
        project_id = str(data.get("project_id") or "")
        content = data.get("content")
        expected_version = data.get("expected_version")
        if not project_id or not isinstance(content, dict):
            await self.emit(
                "autosave-complete",
                {"success": False, "error": "project_id and object content are required"},
            )
            return
        if expected_version is not None and (
            not isinstance(expected_version, int) or isinstance(expected_version, bool)
        ):
            await self.emit(
                "autosave-complete",
                {"success": False, "error": "expected_version must be an integer"},
            )
            return

        try:
            async with self._session_factory() as session:
                state, draft = await self._drafts.autosave(
                    session,
                    project_id,
                    self.user.id,
                    content,
                    expected_version=expected_version,
                )
        except SchemaForgeError as e:
            logger.info("Realtime autosave rejected", project_id=project_id, error=e.message)
            await self.emit(
                "autosave-complete",
                {
                    "success": False,
                    "error": e.message,
                    "error_type": type(e).__name__,
                    "details": e.details,
                },
            )
            return

        await self.emit(
            "autosave-complete",
            {
                "success": True,
                "version": state.version,
                "saved_at": state.last_saved_at,
                "draft_version": draft.version,
            },
        )
        await self._rooms.broadcast(
            project_room(project_id),
            "collaborator-saved",
            {**self._sender(), "version": state.version},
            exclude=self.websocket,
        )

    async def on_autosave_status(self, data: dict[str, Any]) -> None:
        room = await self._joined_room(data)
        if room is None:
            return
        await self._rooms.broadcast(
            room,
            "autosave-status-update",
            {**self._sender(), "status": data.get("status")},
            exclude=self.websocket,
        )

    async def on_cursor_move(self, data: dict[str, Any]) -> None:
        room = await self._joined_room(data)
        if room is None:
            return
        await self._rooms.broadcast(
            room,
            "user-cursor-move",
            {**self._sender(), "position": data.get("position")},
            exclude=self.websocket,
        )

    async def on_text_select(self, data: dict[str, Any]) -> None:
        room = await self._joined_room(data)
        if room is None:
            return
        await self._rooms.broadcast(
            room,
            "user-text-select",
            {**self._sender(), "selection": data.get("selection")},
            exclude=self.websocket,
        )

    async def on_get_autosave_status(self, data: dict[str, Any]) -> None:
        project_id = str(data.get("project_id") or "")
        try:
            async with self._session_factory() as session:
                status = await self._drafts.status(session, project_id, self.user.id)
        except SchemaForgeError as e:
            await self.emit(
                "autosave-status-response", {"has_autosave": False, "error": e.message}
            )
            return

        await self.emit("autosave-status-response", status.model_dump(mode="json"))
