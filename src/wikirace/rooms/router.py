"""Rooms API: create, list, join, leave, start, progress, win, heartbeat."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from wikirace.dependencies import get_coordinator
from wikirace.errors import NotRoomOwner
from wikirace.rooms.coordinator import RoomCoordinator
from wikirace.rooms.schemas import (
    CreateRoomRequest,
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    PlayerRequest,
    ProgressRequest,
    ProgressResponse,
    RoomListResponse,
    RoomResponse,
    WinRequest,
    WinResponse,
)

router = APIRouter(prefix="/api/v1/rooms", tags=["Rooms"])


@router.post("", response_model=CreateRoomResponse, status_code=201)
async def create_room(
    body: CreateRoomRequest,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> CreateRoomResponse:
    """Create a room owned by the caller."""
    code, player_id = await coordinator.create_room(body.to_config(), body.nick)
    return CreateRoomResponse(room_code=code, player_id=player_id)


@router.get("", response_model=RoomListResponse)
async def list_public_rooms(
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> RoomListResponse:
    """Public rooms still accepting players."""
    rooms = await coordinator.list_public_rooms()
    return RoomListResponse(
        rooms=[RoomResponse.model_validate(r.model_dump()) for r in rooms],
        total=len(rooms),
    )


@router.get("/{room_code}", response_model=RoomResponse)
async def get_room(
    room_code: str,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> RoomResponse:
    room = await coordinator.get_room(room_code)
    return RoomResponse.model_validate(room.model_dump())


@router.post("/{room_code}/join", response_model=JoinRoomResponse)
async def join_room(
    room_code: str,
    body: JoinRoomRequest,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> JoinRoomResponse:
    player_id = await coordinator.join_room(room_code, body.nick)
    return JoinRoomResponse(player_id=player_id)


@router.post("/{room_code}/leave", status_code=204)
async def leave_room(
    room_code: str,
    body: PlayerRequest,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> None:
    await coordinator.leave_room(room_code, body.player_id)


@router.post("/{room_code}/start", status_code=204)
async def start_game(
    room_code: str,
    body: PlayerRequest,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> None:
    """Start the race.

    The owner check reads the current snapshot before the write; it is
    advisory (no authentication) and can race with an ownership handoff.
    """
    room = await coordinator.get_room(room_code)
    if room.owner_id != body.player_id:
        raise NotRoomOwner(f"Player {body.player_id} does not own room {room_code}")
    await coordinator.start_game(room_code)


@router.post("/{room_code}/progress", response_model=ProgressResponse)
async def report_progress(
    room_code: str,
    body: ProgressRequest,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> ProgressResponse:
    clicks = await coordinator.report_progress(room_code, body.player_id, body.clicks)
    return ProgressResponse(clicks=clicks)


@router.post("/{room_code}/win", response_model=WinResponse)
async def report_win(
    room_code: str,
    body: WinRequest,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> WinResponse:
    outcome = await coordinator.report_win(
        room_code,
        body.player_id,
        body.nick,
        body.time_ms,
        body.clicks,
        body.stop_on_first_win,
    )
    return WinResponse(is_winner=outcome.is_winner, winner=outcome.winner, phase=outcome.phase)


@router.post("/{room_code}/heartbeat", status_code=204)
async def heartbeat(
    room_code: str,
    coordinator: RoomCoordinator = Depends(get_coordinator),  # noqa: B008
) -> None:
    await coordinator.heartbeat(room_code)
