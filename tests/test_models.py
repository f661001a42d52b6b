"""Tests for catalog records and user-facing error formatting."""

from __future__ import annotations

import dataclasses

import pytest

from streamlist.errors import (
    StorageError,
    StreamlistError,
    UpdateError,
    format_user_error,
)
from streamlist.models import Playlist, Song, new_id


def test_song_resolution_flag() -> None:
    song = Song(id="s1", playlist_id="p1", title="Song", source_url="u")
    assert song.is_resolved is False
    resolved = dataclasses.replace(song, resolved_stream_url="https://cdn/a")
    assert resolved.is_resolved is True


def test_records_are_immutable() -> None:
    playlist = Playlist(id="p1", name="Mix")
    with pytest.raises(dataclasses.FrozenInstanceError):
        playlist.name = "Other"  # type: ignore[misc]
    assert playlist.songs == ()


def test_new_ids_are_unique_hex() -> None:
    ids = {new_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(len(value) == 32 for value in ids)


def test_format_user_error() -> None:
    message = format_user_error(
        what_failed="Could not save.",
        likely_cause="Disk full.",
        next_step="Free space.",
        detail="errno 28",
    )
    assert message.splitlines() == [
        "Could not save.",
        "Likely cause: Disk full.",
        "Next step: Free space.",
        "Details: errno 28",
    ]


def test_update_error_is_a_storage_error() -> None:
    assert issubclass(UpdateError, StorageError)
    assert issubclass(StorageError, StreamlistError)
