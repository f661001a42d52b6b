"""Playlist/song CRUD orchestration on top of a `CatalogGateway`.

The service validates input before any write, maps missing rows onto
`NotFoundError`, and keeps `order` fields dense. Adding a song is split into a
synchronous write and a background enrichment step: the song is returned as
soon as it is stored, and stream resolution runs as a separate task whose
failure only leaves the song unresolved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from contextlib import suppress

from streamlist.errors import (
    NotFoundError,
    ResolutionError,
    StorageError,
    UpdateError,
    ValidationError,
)
from streamlist.models import Playlist, Song, new_id, utc_now
from streamlist.services.catalog_store import CatalogGateway
from streamlist.services.url_resolver import UrlResolver

logger = logging.getLogger(__name__)


class CatalogService:
    """Owns catalog business rules; the gateway only stores rows."""

    def __init__(self, *, store: CatalogGateway, resolver: UrlResolver) -> None:
        self._store = store
        self._resolver = resolver
        self._background: set[asyncio.Task[None]] = set()

    async def list_playlists(self) -> list[Playlist]:
        return await self._store.list_playlists()

    async def get_playlist(self, playlist_id: str) -> Playlist:
        playlist = await self._store.get_playlist(playlist_id)
        if playlist is None:
            raise NotFoundError(f"Playlist not found: {playlist_id}")
        return playlist

    async def create_playlist(self, name: str) -> Playlist:
        name = _require_name(name)
        playlist = await self._store.append_playlist(new_id(), name, utc_now())
        logger.info(
            "Created playlist %s (%s) at order %d", playlist.id, name, playlist.order
        )
        return playlist

    async def rename_playlist(self, playlist_id: str, new_name: str) -> Playlist:
        new_name = _require_name(new_name)
        playlist = await self._store.update_playlist_name(
            playlist_id, new_name, utc_now()
        )
        if playlist is None:
            raise NotFoundError(f"Playlist not found: {playlist_id}")
        return playlist

    async def delete_playlist(self, playlist_id: str) -> None:
        if not await self._store.delete_playlist(playlist_id):
            raise NotFoundError(f"Playlist not found: {playlist_id}")
        logger.info("Deleted playlist %s", playlist_id)

    async def reorder_playlists(self, ordered_ids: Sequence[str]) -> list[Playlist]:
        """Assign `order = index` for a full permutation of playlist ids."""
        ordered = _require_unique(ordered_ids)
        if not await self._store.apply_playlist_order(ordered):
            raise UpdateError(
                "Playlist order was not applied: the playlist set changed or the "
                "ids are not a permutation of the existing playlists."
            )
        return await self._store.list_playlists()

    async def list_songs(self, playlist_id: str) -> list[Song]:
        await self._require_playlist(playlist_id)
        return await self._store.list_songs(playlist_id)

    async def get_song(self, song_id: str) -> Song:
        song = await self._store.get_song(song_id)
        if song is None:
            raise NotFoundError(f"Song not found: {song_id}")
        return song

    async def add_song(self, playlist_id: str, title: str, source_url: str) -> Song:
        """Store a new song and schedule its stream resolution in the background."""
        source_url = source_url.strip()
        if not self._resolver.validate(source_url):
            raise ValidationError(f"Invalid source URL: {source_url!r}")
        title = title.strip() or source_url
        song = await self._store.append_song(
            playlist_id, new_id(), title, source_url, utc_now()
        )
        if song is None:
            raise NotFoundError(f"Playlist not found: {playlist_id}")
        logger.info("Added song %s to playlist %s", song.id, playlist_id)
        task = asyncio.create_task(self._resolve_in_background(song.id, source_url))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return song

    async def remove_song(self, song_id: str) -> None:
        if not await self._store.delete_song(song_id):
            raise NotFoundError(f"Song not found: {song_id}")

    async def reorder_songs(
        self, playlist_id: str, ordered_ids: Sequence[str]
    ) -> list[Song]:
        ordered = _require_unique(ordered_ids)
        await self._require_playlist(playlist_id)
        if not await self._store.apply_song_order(playlist_id, ordered):
            raise UpdateError(
                "Song order was not applied: the playlist's songs changed or the "
                "ids are not a permutation of its songs."
            )
        return await self._store.list_songs(playlist_id)

    async def resolve_song(self, song_id: str) -> Song:
        """Resolve (or re-resolve) a song's stream URL and surface any failure."""
        song = await self.get_song(song_id)
        resolved = await self._resolver.resolve(song.source_url)
        updated = await self._store.update_song_stream(
            song_id, resolved.stream_url, resolved.duration
        )
        if updated is None:
            raise NotFoundError(f"Song not found: {song_id}")
        return updated

    async def wait_for_background_tasks(self) -> None:
        """Wait until all pending background resolutions have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel pending background resolutions."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._background.clear()

    async def _resolve_in_background(self, song_id: str, source_url: str) -> None:
        try:
            resolved = await self._resolver.resolve(source_url)
            updated = await self._store.update_song_stream(
                song_id, resolved.stream_url, resolved.duration
            )
        except (ResolutionError, StorageError) as exc:
            logger.warning(
                "Background resolution failed for song %s: %s",
                song_id,
                exc,
                extra={"event": "song_resolution_failed", "song_id": song_id},
            )
            return
        except Exception:
            logger.exception(
                "Unexpected error while resolving song %s",
                song_id,
                extra={"event": "song_resolution_failed", "song_id": song_id},
            )
            return
        if updated is None:
            logger.info("Song %s was removed before its stream resolved", song_id)
            return
        logger.info(
            "Resolved stream for song %s",
            song_id,
            extra={"event": "song_resolved", "song_id": song_id},
        )

    async def _require_playlist(self, playlist_id: str) -> None:
        if await self._store.get_playlist(playlist_id) is None:
            raise NotFoundError(f"Playlist not found: {playlist_id}")


def _require_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValidationError("Playlist name cannot be empty")
    return cleaned


def _require_unique(ordered_ids: Sequence[str]) -> list[str]:
    ordered = list(ordered_ids)
    if len(set(ordered)) != len(ordered):
        raise ValidationError("Reorder ids must not contain duplicates")
    return ordered
