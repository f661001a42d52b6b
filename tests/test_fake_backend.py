"""Tests for the in-memory media backend."""

from __future__ import annotations

import asyncio

import pytest

from streamlist.errors import LoadError
from streamlist.services.fake_backend import FakeMediaBackend
from streamlist.services.media_backend import (
    BackendEvent,
    PlaybackFailed,
    PositionUpdated,
    TrackEnded,
)


def _run(coro):
    return asyncio.run(coro)


def _collect(backend: FakeMediaBackend) -> list[BackendEvent]:
    events: list[BackendEvent] = []

    async def handler(event: BackendEvent) -> None:
        events.append(event)

    backend.set_event_handler(handler)
    return events


def test_load_uses_configured_durations() -> None:
    async def run() -> None:
        backend = FakeMediaBackend(
            default_duration=60.0, durations={"https://cdn/a": 12.0}
        )
        assert await backend.load("https://cdn/a") == 12.0
        assert await backend.load("https://cdn/b") == 60.0
        assert backend.loaded_urls == ["https://cdn/a", "https://cdn/b"]
        assert backend.is_playing is False
        assert backend.position == 0.0

    _run(run())


def test_load_failure_raises_load_error() -> None:
    async def run() -> None:
        backend = FakeMediaBackend(failing_urls=["https://cdn/broken"])
        with pytest.raises(LoadError):
            await backend.load("https://cdn/broken")
        assert backend.loaded_urls == []

    _run(run())


def test_play_requires_loaded_media() -> None:
    async def run() -> None:
        backend = FakeMediaBackend()
        await backend.play()
        assert backend.is_playing is False
        await backend.load("https://cdn/a")
        await backend.play()
        assert backend.is_playing is True

    _run(run())


def test_seek_clamps_and_reports_position() -> None:
    async def run() -> list[BackendEvent]:
        backend = FakeMediaBackend(default_duration=30.0)
        events = _collect(backend)
        await backend.load("https://cdn/a")
        await backend.seek(45.0)
        await backend.seek(-1.0)
        return events

    events = _run(run())
    assert events == [PositionUpdated(30.0, 30.0), PositionUpdated(0.0, 30.0)]


def test_volume_is_clamped_and_rate_stored() -> None:
    async def run() -> None:
        backend = FakeMediaBackend()
        await backend.set_volume(3.0)
        assert backend.volume == 1.0
        await backend.set_rate(1.5)
        assert backend.rate == 1.5

    _run(run())


def test_ticker_advances_and_reports_track_end() -> None:
    async def run() -> list[BackendEvent]:
        backend = FakeMediaBackend(tick_interval_s=0.01, default_duration=0.05)
        events = _collect(backend)
        await backend.start()
        await backend.load("https://cdn/a")
        await backend.play()
        for _ in range(100):
            if any(isinstance(event, TrackEnded) for event in events):
                break
            await asyncio.sleep(0.01)
        await backend.shutdown()
        assert backend.is_playing is False
        return events

    events = _run(run())
    positions = [e.position for e in events if isinstance(e, PositionUpdated)]
    assert positions == sorted(positions)
    assert positions[-1] == pytest.approx(0.05)
    assert isinstance(events[-1], TrackEnded)


def test_rate_scales_tick_progress() -> None:
    async def run() -> None:
        backend = FakeMediaBackend(tick_interval_s=0.5, default_duration=10.0)
        await backend.load("https://cdn/a")
        await backend.set_rate(2.0)
        await backend.play()
        await backend._tick()  # noqa: SLF001
        assert backend.position == 1.0

    _run(run())


def test_finish_and_fail_hooks_emit_events() -> None:
    async def run() -> list[BackendEvent]:
        backend = FakeMediaBackend(default_duration=8.0)
        events = _collect(backend)
        await backend.load("https://cdn/a")
        await backend.play()
        await backend.finish_track()
        assert backend.position == 8.0
        await backend.fail_playback("stream reset")
        return events

    events = _run(run())
    assert events == [TrackEnded(), PlaybackFailed("stream reset")]
