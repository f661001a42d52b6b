"""JSON persistence for player settings that survive restarts.

Loading never fails: a missing, unreadable or malformed file yields default
settings plus an optional user-facing notice. Saving writes a temp file next to
the target and swaps it in, so a crash mid-write leaves the previous file intact.
"""

from __future__ import annotations

import json
import logging
import math
import time
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from streamlist.errors import format_user_error
from streamlist.runtime_config import DEFAULT_BACKEND, normalize_backend_name
from streamlist.services.playback_engine import (
    RATE_MAX,
    RATE_MIN,
    VOLUME_MAX,
    VOLUME_MIN,
)

logger = logging.getLogger(__name__)

_REPLACE_ATTEMPTS = 4
_TRANSIENT_WINERRORS = frozenset({2, 5, 32})
_TRANSIENT_ERRNOS = frozenset({13, 16})


@dataclass(frozen=True)
class AppState:
    """Settings restored by `streamlist play` and written back after it."""

    last_playlist_id: str | None = None
    volume: float = 1.0
    playback_rate: float = 1.0
    playback_backend: str = DEFAULT_BACKEND
    log_level: str = "INFO"


def _number(value: Any, default: float, low: float, high: float) -> float:
    # bool is an int subclass; JSON `true` must not become 1.0.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value):
        return default
    return min(max(float(value), low), high)


def _coerce_state(data: dict[str, Any]) -> AppState:
    playlist_id = data.get("last_playlist_id")
    backend = data.get("playback_backend")
    log_level = data.get("log_level")
    return AppState(
        last_playlist_id=playlist_id if isinstance(playlist_id, str) else None,
        volume=_number(data.get("volume"), 1.0, VOLUME_MIN, VOLUME_MAX),
        playback_rate=_number(data.get("playback_rate"), 1.0, RATE_MIN, RATE_MAX),
        playback_backend=normalize_backend_name(
            backend if isinstance(backend, str) else None
        ),
        log_level=log_level if isinstance(log_level, str) else "INFO",
    )


def _reset_notice(likely_cause: str, next_step: str) -> str:
    return format_user_error(
        what_failed="Player settings were reset to defaults.",
        likely_cause=likely_cause,
        next_step=next_step,
    )


def load_state_with_notice(path: Path) -> tuple[AppState, str | None]:
    """Load settings, returning a notice when the file had to be ignored."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.debug("No settings file at %s; using defaults", path)
        return AppState(), None
    except OSError as exc:
        logger.warning("Cannot read settings file %s: %s", path, exc)
        return AppState(), _reset_notice(
            "The settings file is unreadable (permissions or IO failure).",
            f"Check access to '{path}' and run the command again.",
        )
    except json.JSONDecodeError:
        logger.warning("Settings file %s is invalid JSON; using defaults", path)
        return AppState(), _reset_notice(
            "The settings file is corrupt or was partially written.",
            f"Delete or repair '{path}' and run the command again.",
        )
    if not isinstance(data, dict):
        logger.warning("Settings file %s does not hold a JSON object", path)
        return AppState(), _reset_notice(
            "The settings file was written in an unexpected format.",
            f"Delete '{path}' and run the command again.",
        )
    return _coerce_state(data), None


def load_state(path: Path) -> AppState:
    return load_state_with_notice(path)[0]


def save_state(path: Path, state: AppState) -> None:
    """Write settings atomically, retrying replaces blocked by other processes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
    encoded = json.dumps(asdict(state), indent=2, sort_keys=True)
    backoff_s = 0.02
    try:
        attempt = 1
        while True:
            staging.write_text(encoded, encoding="utf-8")
            try:
                staging.replace(path)
            except OSError as exc:
                if attempt >= _REPLACE_ATTEMPTS or not _is_transient(exc):
                    raise
                logger.debug("Settings replace blocked (%s); retrying", exc)
                time.sleep(backoff_s)
                backoff_s = min(backoff_s * 2.0, 0.25)
                attempt += 1
            else:
                return
    finally:
        with suppress(OSError):
            staging.unlink()


def _is_transient(exc: OSError) -> bool:
    """Windows virus scanners and indexers briefly hold files open."""
    if getattr(exc, "winerror", None) in _TRANSIENT_WINERRORS:
        return True
    if exc.errno in _TRANSIENT_ERRNOS:
        return True
    message = str(exc).lower()
    return "used by another process" in message or "permission denied" in message
