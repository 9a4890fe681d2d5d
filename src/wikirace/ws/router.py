"""WebSocket endpoint streaming a room's snapshots.

Protocol (server -> client):
    {"type": "room", "data": {...full room document...}}   on connect and every change
    {"type": "room_closed", "room_code": "12345"}           terminal; socket then closes
    {"type": "error", "message": "..."}                     store failure or corrupt room; socket then closes

Snapshots are full state; clients must tolerate repeats.
"""

from __future__ import annotations

from contextlib import aclosing

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from wikirace.config import get_settings
from wikirace.dependencies import get_coordinator
from wikirace.errors import RaceError
from wikirace.rooms.coordinator import RoomCoordinator

logger = structlog.get_logger()

router = APIRouter()

ROOM_CLOSED_CODE = 4404


@router.websocket("/ws/rooms/{room_code}")
async def room_updates(
    websocket: WebSocket,
    room_code: str,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> None:
    await websocket.accept()
    logger.info("ws_connected", room_code=room_code)
    poll_timeout = get_settings().ws_poll_timeout_seconds

    try:
        async with aclosing(coordinator.watch_room(room_code, poll_timeout)) as snapshots:
            async for room in snapshots:
                if room is None:
                    await websocket.send_json({"type": "room_closed", "room_code": room_code})
                    await websocket.close(code=ROOM_CLOSED_CODE)
                    break
                await websocket.send_json({
                    "type": "room",
                    "data": room.model_dump(mode="json", by_alias=True, exclude_none=True),
                })
    except WebSocketDisconnect:
        pass
    except RaceError as exc:
        logger.warning("ws_watch_failed", room_code=room_code, error=exc.code)
        await websocket.send_json({"type": "error", "message": exc.message})
        await websocket.close(code=1011)
    except ValueError:
        logger.exception("ws_room_unreadable", room_code=room_code)
        await websocket.send_json({"type": "error", "message": "Room data is unreadable"})
        await websocket.close(code=1011)
    finally:
        logger.info("ws_disconnected", room_code=room_code)
