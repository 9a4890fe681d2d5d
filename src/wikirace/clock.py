"""Millisecond timestamps and race-time formatting."""

from __future__ import annotations

import time


def now_ms() -> int:
    """Current Unix time in integer milliseconds."""
    return int(time.time() * 1000)


def format_time(ms: int) -> str:
    """Format a duration as zero-padded MM:SS.

    Minutes are not wrapped into hours: 6000000 ms renders as "100:00".
    """
    total_seconds = max(0, int(ms)) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"
