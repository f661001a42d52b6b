"""Service events published by `PlaybackEngine` to registered observers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from streamlist.models import Song
    from streamlist.services.playback_engine import PlaybackSnapshot


@dataclass(frozen=True)
class PlaybackStateChanged:
    """Emitted whenever the engine's observable snapshot changes."""

    state: PlaybackSnapshot


@dataclass(frozen=True)
class TrackChanged:
    """Emitted when a track finished loading, or with `None` when playback stops."""

    song: Song | None
