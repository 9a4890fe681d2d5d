"""Tests for the room WebSocket stream, with a mocked socket and coordinator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect

from wikirace.errors import StoreUnavailable
from wikirace.rooms.models import Player, Room
from wikirace.ws.router import ROOM_CLOSED_CODE, room_updates

pytestmark = pytest.mark.asyncio


def _room(phase: str = "waiting") -> Room:
    owner = Player(id="p_1", nick="Ana", is_owner=True, joined_at=1)
    return Room(
        name="Sala", code="12345", owner_id="p_1", phase=phase, start_page="Brasil",
        target_title="Lua", target_slug="Lua", created_at=1, last_activity_at=1,
        players={"p_1": owner},
    )


class _Coordinator:
    def __init__(self, snapshots, error=None):
        self.snapshots = snapshots
        self.error = error

    async def watch_room(self, room_code, poll_timeout=1.0):
        for snapshot in self.snapshots:
            yield snapshot
        if self.error is not None:
            raise self.error


class TestRoomStream:
    async def test_streams_snapshots_then_closes(self):
        ws = AsyncMock()
        await room_updates(ws, "12345", _Coordinator([_room(), _room("playing"), None]))

        ws.accept.assert_awaited_once()
        sent = [call.args[0] for call in ws.send_json.await_args_list]
        assert [m["type"] for m in sent] == ["room", "room", "room_closed"]
        assert sent[0]["data"]["ownerId"] == "p_1"
        assert sent[1]["data"]["phase"] == "playing"
        assert sent[2]["room_code"] == "12345"
        ws.close.assert_awaited_once_with(code=ROOM_CLOSED_CODE)

    async def test_missing_room_closes_immediately(self):
        ws = AsyncMock()
        await room_updates(ws, "00000", _Coordinator([None]))
        ws.send_json.assert_awaited_once_with({"type": "room_closed", "room_code": "00000"})

    async def test_store_failure_reports_error(self):
        ws = AsyncMock()
        await room_updates(ws, "12345", _Coordinator([_room()], error=StoreUnavailable()))

        last = ws.send_json.await_args_list[-1].args[0]
        assert last["type"] == "error"
        ws.close.assert_awaited_once_with(code=1011)

    async def test_client_disconnect_is_quiet(self):
        ws = AsyncMock()
        ws.send_json.side_effect = WebSocketDisconnect()
        await room_updates(ws, "12345", _Coordinator([_room()]))
        ws.close.assert_not_awaited()

    async def test_unreadable_room_reports_error(self):
        ws = AsyncMock()
        await room_updates(ws, "12345", _Coordinator([], error=ValueError("Field collides with a subtree")))

        ws.send_json.assert_awaited_once_with({"type": "error", "message": "Room data is unreadable"})
        ws.close.assert_awaited_once_with(code=1011)
