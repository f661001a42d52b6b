"""Tests for catalog CRUD rules and background stream resolution."""

from __future__ import annotations

import asyncio
import logging
import sqlite3

import pytest

from streamlist.errors import (
    NotFoundError,
    ResolutionError,
    StorageError,
    UpdateError,
    ValidationError,
)
from streamlist.services.catalog_service import CatalogService
from streamlist.services.catalog_store import SqliteCatalogStore
from streamlist.services.url_resolver import ResolvedStream, YouTubeUrlResolver

URL_A = "https://www.youtube.com/watch?v=aaaaaaaaaaa"
URL_B = "https://youtu.be/bbbbbbbbbbb"


def _run(coro):
    return asyncio.run(coro)


def _extractor(source_url: str) -> ResolvedStream:
    return ResolvedStream(
        stream_url=f"https://cdn.example/{source_url[-11:]}", duration=200.0
    )


def _failing_extractor(source_url: str) -> ResolvedStream:
    raise ResolutionError(f"Failed to extract audio URL: {source_url}")


async def _service(tmp_path, extractor=_extractor) -> CatalogService:
    store = SqliteCatalogStore(tmp_path / "catalog.sqlite")
    await store.initialize()
    resolver = YouTubeUrlResolver(extractor=extractor)
    return CatalogService(store=store, resolver=resolver)


class _GatedResolver(YouTubeUrlResolver):
    """Resolver whose `resolve` blocks until the test releases it."""

    def __init__(self) -> None:
        super().__init__(extractor=_extractor)
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def resolve(self, source_url: str) -> ResolvedStream:
        self.started.set()
        await self.release.wait()
        return await super().resolve(source_url)


def test_create_playlist_appends_in_order(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        first = await service.create_playlist("  Road Trip  ")
        second = await service.create_playlist("Focus")
        assert first.name == "Road Trip"
        assert (first.order, second.order) == (0, 1)
        assert [p.id for p in await service.list_playlists()] == [first.id, second.id]

    _run(run())


@pytest.mark.parametrize("name", ["", "   ", "\t\n"])
def test_create_playlist_rejects_blank_names(tmp_path, name: str) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        with pytest.raises(ValidationError):
            await service.create_playlist(name)
        assert await service.list_playlists() == []

    _run(run())


def test_rename_playlist(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Old")
        renamed = await service.rename_playlist(playlist.id, " New ")
        assert renamed.name == "New"
        assert renamed.modified_at >= playlist.modified_at
        with pytest.raises(ValidationError):
            await service.rename_playlist(playlist.id, " ")
        with pytest.raises(NotFoundError):
            await service.rename_playlist("missing", "Name")

    _run(run())


def test_delete_playlist_removes_its_songs(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        keep = await service.create_playlist("Keep")
        drop = await service.create_playlist("Drop")
        song = await service.add_song(drop.id, "Song", URL_A)
        await service.wait_for_background_tasks()

        await service.delete_playlist(drop.id)

        with pytest.raises(NotFoundError):
            await service.get_song(song.id)
        playlists = await service.list_playlists()
        assert [(p.id, p.order) for p in playlists] == [(keep.id, 0)]
        with pytest.raises(NotFoundError):
            await service.delete_playlist(drop.id)

    _run(run())


def test_reorder_playlists_applies_permutation(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        ids = [(await service.create_playlist(f"List {idx}")).id for idx in range(4)]
        wanted = [ids[2], ids[0], ids[3], ids[1]]

        reordered = await service.reorder_playlists(wanted)

        assert [p.id for p in reordered] == wanted
        assert [p.order for p in reordered] == [0, 1, 2, 3]
        assert [p.id for p in await service.list_playlists()] == wanted

    _run(run())


def test_reorder_playlists_rejects_duplicates_and_mismatches(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        a = (await service.create_playlist("A")).id
        b = (await service.create_playlist("B")).id

        with pytest.raises(ValidationError):
            await service.reorder_playlists([a, a])
        with pytest.raises(UpdateError):
            await service.reorder_playlists([b])
        with pytest.raises(UpdateError):
            await service.reorder_playlists([b, "vanished"])
        assert [p.id for p in await service.list_playlists()] == [a, b]

    _run(run())


def test_add_song_returns_unresolved_then_resolves_in_background(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")

        song = await service.add_song(playlist.id, "  First  ", URL_A)
        assert song.title == "First"
        assert song.order == 0
        assert song.resolved_stream_url is None

        await service.wait_for_background_tasks()
        resolved = await service.get_song(song.id)
        assert resolved.resolved_stream_url == "https://cdn.example/aaaaaaaaaaa"
        assert resolved.duration == 200.0

    _run(run())


def test_add_song_uses_url_as_title_fallback(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")
        song = await service.add_song(playlist.id, "   ", f"  {URL_B} ")
        assert song.title == URL_B
        assert song.source_url == URL_B
        await service.wait_for_background_tasks()

    _run(run())


def test_add_song_order_matches_prior_count(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")
        for idx in range(3):
            song = await service.add_song(playlist.id, f"Song {idx}", URL_A)
            assert song.order == idx
        await service.wait_for_background_tasks()

    _run(run())


@pytest.mark.parametrize(
    "url",
    ["", "not a url", "https://example.com/watch?v=abc", "https://youtu.be/"],
)
def test_add_song_invalid_url_writes_nothing(tmp_path, url: str) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")
        with pytest.raises(ValidationError):
            await service.add_song(playlist.id, "Song", url)
        assert await service.list_songs(playlist.id) == []

    _run(run())


def test_add_song_to_unknown_playlist(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        with pytest.raises(NotFoundError):
            await service.add_song("missing", "Song", URL_A)

    _run(run())


def test_background_resolution_failure_leaves_song_unresolved(
    tmp_path, caplog
) -> None:
    async def run() -> str:
        service = await _service(tmp_path, extractor=_failing_extractor)
        playlist = await service.create_playlist("Mix")
        song = await service.add_song(playlist.id, "Song", URL_A)
        await service.wait_for_background_tasks()
        stored = await service.get_song(song.id)
        assert stored.resolved_stream_url is None
        return song.id

    with caplog.at_level(logging.WARNING, logger="streamlist.services.catalog_service"):
        song_id = _run(run())

    failures = [
        record
        for record in caplog.records
        if getattr(record, "event", None) == "song_resolution_failed"
    ]
    assert len(failures) == 1
    assert getattr(failures[0], "song_id", None) == song_id


def test_background_resolution_logs_unexpected_extractor_errors(
    tmp_path, caplog
) -> None:
    def broken_extractor(source_url: str) -> ResolvedStream:
        raise KeyError("formats")

    async def run() -> str:
        service = await _service(tmp_path, extractor=broken_extractor)
        playlist = await service.create_playlist("Mix")
        song = await service.add_song(playlist.id, "Song", URL_A)
        await service.wait_for_background_tasks()
        stored = await service.get_song(song.id)
        assert stored.resolved_stream_url is None
        return song.id

    with caplog.at_level(logging.WARNING, logger="streamlist.services.catalog_service"):
        song_id = _run(run())

    failures = [
        record
        for record in caplog.records
        if getattr(record, "event", None) == "song_resolution_failed"
    ]
    assert len(failures) == 1
    assert failures[0].levelno == logging.ERROR
    assert failures[0].exc_info is not None
    assert getattr(failures[0], "song_id", None) == song_id


def test_resolve_song_surfaces_failures_and_retries(tmp_path) -> None:
    calls = {"count": 0}

    def flaky(source_url: str) -> ResolvedStream:
        calls["count"] += 1
        if calls["count"] == 1:
            raise ResolutionError("temporary failure")
        return _extractor(source_url)

    async def run() -> None:
        service = await _service(tmp_path, extractor=flaky)
        playlist = await service.create_playlist("Mix")
        song = await service.add_song(playlist.id, "Song", URL_A)
        await service.wait_for_background_tasks()
        assert (await service.get_song(song.id)).resolved_stream_url is None

        resolved = await service.resolve_song(song.id)
        assert resolved.resolved_stream_url == "https://cdn.example/aaaaaaaaaaa"
        with pytest.raises(NotFoundError):
            await service.resolve_song("missing")

    _run(run())


def test_remove_song_compacts_orders(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")
        songs = [
            await service.add_song(playlist.id, f"Song {idx}", URL_A)
            for idx in range(3)
        ]
        await service.wait_for_background_tasks()

        await service.remove_song(songs[1].id)

        remaining = await service.list_songs(playlist.id)
        assert [(s.id, s.order) for s in remaining] == [
            (songs[0].id, 0),
            (songs[2].id, 1),
        ]
        with pytest.raises(NotFoundError):
            await service.remove_song(songs[1].id)

    _run(run())


def test_reorder_songs(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")
        other = await service.create_playlist("Other")
        ids = [
            (await service.add_song(playlist.id, f"Song {idx}", URL_A)).id
            for idx in range(3)
        ]
        foreign = (await service.add_song(other.id, "Elsewhere", URL_B)).id
        await service.wait_for_background_tasks()

        reordered = await service.reorder_songs(playlist.id, list(reversed(ids)))
        assert [s.id for s in reordered] == list(reversed(ids))
        assert [s.order for s in reordered] == [0, 1, 2]

        with pytest.raises(ValidationError):
            await service.reorder_songs(playlist.id, [ids[0], ids[0], ids[1]])
        with pytest.raises(UpdateError):
            await service.reorder_songs(playlist.id, [ids[0], ids[1], foreign])
        with pytest.raises(NotFoundError):
            await service.reorder_songs("missing", ids)

    _run(run())


def test_list_songs_is_idempotent_and_checks_playlist(tmp_path) -> None:
    async def run() -> None:
        service = await _service(tmp_path)
        playlist = await service.create_playlist("Mix")
        await service.add_song(playlist.id, "Song", URL_A)
        await service.wait_for_background_tasks()

        first = await service.list_songs(playlist.id)
        second = await service.list_songs(playlist.id)
        assert first == second
        with pytest.raises(NotFoundError):
            await service.list_songs("missing")

    _run(run())


def test_storage_failures_surface_as_storage_error(tmp_path, monkeypatch) -> None:
    async def run() -> None:
        service = await _service(tmp_path)

        def broken_connect(self):
            raise sqlite3.OperationalError("unable to open database")

        monkeypatch.setattr(SqliteCatalogStore, "_connect", broken_connect)
        with pytest.raises(StorageError):
            await service.create_playlist("Mix")

    _run(run())


def test_aclose_cancels_pending_resolution(tmp_path) -> None:
    async def run() -> None:
        store = SqliteCatalogStore(tmp_path / "catalog.sqlite")
        await store.initialize()
        resolver = _GatedResolver()
        service = CatalogService(store=store, resolver=resolver)
        playlist = await service.create_playlist("Mix")
        song = await service.add_song(playlist.id, "Song", URL_A)
        await asyncio.wait_for(resolver.started.wait(), timeout=1.0)

        await service.aclose()
        resolver.release.set()

        assert (await service.get_song(song.id)).resolved_stream_url is None

    _run(run())
