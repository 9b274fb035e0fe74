"""Tests for the WebSocket room registry."""

from typing import Any

import pytest

from schemaforge.core.security import AuthenticatedUser
from schemaforge.realtime.rooms import RoomManager, project_room


class FakeSocket:
    """Records sent messages; optionally fails every send."""

    def __init__(self, broken: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: int | None = None
        self.broken = broken

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.broken:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = code


USER = AuthenticatedUser(id="u1", name="Ada")
ROOM = project_room("p1")


@pytest.fixture
def rooms() -> RoomManager:
    return RoomManager()


@pytest.mark.unit
async def test_join_moves_between_rooms(rooms: RoomManager) -> None:
    ws = FakeSocket()
    await rooms.connect(ws, USER)

    assert await rooms.join(ws, ROOM) is None
    assert await rooms.join(ws, ROOM) is None
    assert await rooms.join(ws, project_room("p2")) == ROOM

    assert rooms.room_of(ws) == "project:p2"
    assert rooms.room_count(ROOM) == 0
    assert rooms.room_count("project:p2") == 1


@pytest.mark.unit
async def test_broadcast_excludes_sender(rooms: RoomManager) -> None:
    sender, peer, outsider = FakeSocket(), FakeSocket(), FakeSocket()
    for ws in (sender, peer, outsider):
        await rooms.connect(ws, USER)
    await rooms.join(sender, ROOM)
    await rooms.join(peer, ROOM)

    reached = await rooms.broadcast(ROOM, "user-cursor-move", {"position": 1}, exclude=sender)

    assert reached == 1
    assert peer.sent == [{"event": "user-cursor-move", "data": {"position": 1}}]
    assert sender.sent == []
    assert outsider.sent == []


@pytest.mark.unit
async def test_failed_send_drops_socket(rooms: RoomManager) -> None:
    healthy, broken = FakeSocket(), FakeSocket(broken=True)
    for ws in (healthy, broken):
        await rooms.connect(ws, USER)
        await rooms.join(ws, ROOM)

    assert await rooms.broadcast(ROOM, "collaborator-saved", {"version": 2}) == 1
    assert rooms.connection_count == 1
    assert rooms.room_of(broken) is None


@pytest.mark.unit
async def test_disconnect_reports_room_and_close_all(rooms: RoomManager) -> None:
    first, second = FakeSocket(), FakeSocket()
    await rooms.connect(first, USER)
    await rooms.connect(second, USER)
    await rooms.join(first, ROOM)

    connection = await rooms.disconnect(first)
    assert connection.room == ROOM
    assert await rooms.disconnect(first) is None

    await rooms.close_all()
    assert second.closed_with == 1001
    assert rooms.connection_count == 0
