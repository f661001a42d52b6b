"""Time formatting helpers for now-playing output."""

from __future__ import annotations

import math


def format_time(seconds: float) -> str:
    """Format seconds as M:SS, or H:MM:SS from one hour on."""
    total = _coerce_seconds(seconds)
    if total is None:
        return "0:00"
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_time_short(seconds: float) -> str:
    """Format seconds as M:SS without an hour field; `--:--` when unknown."""
    total = _coerce_seconds(seconds)
    if total is None:
        return "--:--"
    return f"{total // 60}:{total % 60:02d}"


def _coerce_seconds(value: float) -> int | None:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric) or numeric < 0:
        return None
    return int(numeric)
