"""Error kinds surfaced by the store, the room coordinator and the rankings.

Every error carries the HTTP status and machine-readable code the API
renders, so routers never translate them by hand.
"""

from __future__ import annotations


class RaceError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "race_error"
    default_message: str = "Request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(RaceError):
    status_code = 404
    code = "room_not_found"
    default_message = "Room does not exist"


class PlayerNotFound(RaceError):
    status_code = 404
    code = "player_not_found"
    default_message = "Player is not in this room"


class RoomFull(RaceError):
    status_code = 409
    code = "room_full"
    default_message = "Room is full"


class GameAlreadyStarted(RaceError):
    status_code = 409
    code = "game_already_started"
    default_message = "The game has already started in this room"


class GameNotStarted(RaceError):
    status_code = 409
    code = "game_not_started"
    default_message = "The game has not started yet"


class NotRoomOwner(RaceError):
    status_code = 403
    code = "not_room_owner"
    default_message = "Only the room owner can do this"


class ImplausibleResult(RaceError):
    status_code = 422
    code = "implausible_result"
    default_message = "Result is below the plausibility floor"


class DataUnavailable(RaceError):
    status_code = 503
    code = "data_unavailable"
    default_message = "Start pages and themes could not be loaded"


class StoreUnavailable(RaceError):
    status_code = 503
    code = "store_unavailable"
    default_message = "Shared store is temporarily unavailable, please retry"
