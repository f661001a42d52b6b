"""Catalog records shared by the store, the catalog service and the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class Song:
    """Track reference owned by exactly one playlist.

    `playlist_id` is a lookup key only; ownership lives in `Playlist.songs`.
    """

    id: str
    playlist_id: str
    title: str
    source_url: str
    resolved_stream_url: str | None = None
    duration: float = 0.0
    added_at: datetime = field(default_factory=utc_now)
    order: int = 0

    @property
    def is_resolved(self) -> bool:
        return bool(self.resolved_stream_url)


@dataclass(frozen=True)
class Playlist:
    """Named, ordered collection of songs."""

    id: str
    name: str
    created_at: datetime = field(default_factory=utc_now)
    modified_at: datetime = field(default_factory=utc_now)
    order: int = 0
    songs: tuple[Song, ...] = ()
