"""Pure room rules: phase transitions, owner election, identifiers.

Phase progression: waiting -> playing -> finished.
Transitions are validated: no skipping states or going backwards.
"""

from __future__ import annotations

import secrets
import uuid
from collections.abc import Mapping
from typing import Any

ROOM_CODE_MIN = 10000
ROOM_CODE_MAX = 99999

VALID_TRANSITIONS: dict[str, list[str]] = {
    "waiting": ["playing"],
    "playing": ["finished"],
    "finished": [],
}


class InvalidPhaseTransition(ValueError):
    pass


def validate_transition(current_phase: str, target_phase: str) -> None:
    """Validate a phase transition. Raises InvalidPhaseTransition if invalid."""
    valid = VALID_TRANSITIONS.get(current_phase, [])
    if target_phase not in valid:
        raise InvalidPhaseTransition(
            f"Invalid transition: {current_phase} -> {target_phase}. "
            f"Valid transitions: {valid}"
        )


def generate_room_code() -> str:
    """Random 5-digit room code in 10000..99999."""
    return str(ROOM_CODE_MIN + secrets.randbelow(ROOM_CODE_MAX - ROOM_CODE_MIN + 1))


def new_player_id() -> str:
    """Opaque per-join token; never reused."""
    return f"p_{uuid.uuid4().hex[:16]}"


def elect_successor(players: Mapping[str, Mapping[str, Any]], leaving_id: str) -> str | None:
    """Pick the next owner among the players that stay.

    Earliest ``joinedAt`` wins, ties go to the lowest id. Operates on raw
    player documents so every client computes the same answer from the
    same snapshot.
    """
    remaining = [
        (int(p.get("joinedAt", 0)), pid)
        for pid, p in players.items()
        if pid != leaving_id
    ]
    if not remaining:
        return None
    return min(remaining)[1]
