"""
WebSocket endpoints.

Usage:
    /ws/autosave?token=<JWT>            collaborative autosave protocol
    /ws/bulk/jobs/{job_id}?token=<JWT>  progress stream of one bulk job

Authentication:
    The JWT travels in the query string. An invalid token closes the socket
    before it is accepted, with code 4001. An unknown job closes with 4004.

Messages (Server -> Client) on the job stream:
    - job-state: snapshot sent right after connecting
        {"event": "job-state", "data": {<job view>}}
    - url_processed / url_failed / job_completed / job_failed / job_cancelled
        {"event": "<type>", "data": {<job event>}}
    The socket is closed by the server after the terminal event.
"""

import asyncio

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from schemaforge.core.security import AuthenticatedUser, decode_token
from schemaforge.database.connection import get_session
from schemaforge.models.jobs import JobView
from schemaforge.realtime.autosave_socket import AutosaveSocketSession
from schemaforge.realtime.rooms import RoomManager
from schemaforge.services.job_events import Subscription
from schemaforge.utils.exceptions import AuthenticationError
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

WS_CLOSE_UNAUTHORIZED = 4001
WS_CLOSE_NOT_FOUND = 4004


async def authenticate_websocket(
    websocket: WebSocket, token: str | None
) -> AuthenticatedUser | None:
    """Verify the query token; closes the socket and returns None when invalid."""
    if not token:
        logger.warning("WebSocket auth: missing token")
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason="Authentication token required")
        return None

    try:
        return decode_token(token)
    except AuthenticationError as e:
        logger.warning("WebSocket auth failed", reason=e.message)
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason=e.message)
        return None


@router.websocket("/autosave")
async def autosave_socket(
    websocket: WebSocket,
    token: str | None = Query(default=None, description="JWT access token"),
) -> None:
    """Collaborative autosave: join a project room, save, relay cursor and selection."""
    user = await authenticate_websocket(websocket, token)
    if user is None:
        return

    await websocket.accept()

    session = AutosaveSocketSession(
        websocket,
        user,
        websocket.app.state.rooms,
        websocket.app.state.draft_service,
        get_session,
    )
    await session.run()


@router.websocket("/bulk/jobs/{job_id}")
async def bulk_job_socket(
    websocket: WebSocket,
    job_id: str,
    token: str | None = Query(default=None, description="JWT access token"),
) -> None:
    """Stream the lifecycle events of one of the caller's bulk jobs."""
    user = await authenticate_websocket(websocket, token)
    if user is None:
        return

    store = websocket.app.state.job_store
    if store.get(job_id, user.id) is None:
        await websocket.close(code=WS_CLOSE_NOT_FOUND, reason="Job not found or access denied")
        return

    await websocket.accept()
    rooms: RoomManager = websocket.app.state.rooms

    # Subscribe before the snapshot so no event falls between the two
    with websocket.app.state.job_events.subscribe(job_id) as events:
        job = store.get(job_id, user.id)
        await rooms.send(websocket, "job-state", JobView.from_job(job).model_dump(mode="json"))
        if job.is_terminal:
            await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
            return

        forward_task = asyncio.create_task(_forward_events(websocket, rooms, events))
        receive_task = asyncio.create_task(_wait_for_disconnect(websocket))

        done, pending = await asyncio.wait(
            [forward_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if forward_task in done:
            await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)

    logger.debug("Bulk job stream closed", job_id=job_id)


async def _forward_events(websocket: WebSocket, rooms: RoomManager, events: Subscription) -> None:
    """Relay events until the job reaches a terminal state."""
    async for event in events:
        await rooms.send(websocket, event.type.value, event.to_message())
        if event.type.is_terminal:
            return


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain client messages; returns once the client goes away."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
