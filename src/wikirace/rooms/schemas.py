"""Pydantic request/response models for the rooms API.

Bodies use camelCase, like the room documents watchers receive.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wikirace.rooms.models import Room, RoomConfig, Winner


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NickField(_Body):
    nick: str = Field(min_length=1, max_length=32)


class CreateRoomRequest(RoomConfig):
    nick: str = Field(min_length=1, max_length=32)

    def to_config(self) -> RoomConfig:
        return RoomConfig.model_validate(self.model_dump(exclude={"nick"}))


class CreateRoomResponse(_Body):
    room_code: str
    player_id: str


class JoinRoomRequest(NickField):
    pass


class JoinRoomResponse(_Body):
    player_id: str


class PlayerRequest(_Body):
    player_id: str


class ProgressRequest(PlayerRequest):
    clicks: int = Field(ge=0)


class ProgressResponse(_Body):
    clicks: int


class WinRequest(PlayerRequest, NickField):
    time_ms: int = Field(ge=0)
    clicks: int = Field(ge=0)
    stop_on_first_win: bool | None = None


class WinResponse(_Body):
    is_winner: bool
    winner: Winner
    phase: str


class RoomResponse(Room):
    pass


class RoomListResponse(_Body):
    rooms: list[RoomResponse]
    total: int
