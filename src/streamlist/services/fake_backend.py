"""Fake media backend for deterministic testing and the `--backend fake` CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass

from streamlist.errors import LoadError

from .media_backend import BackendEvent, PlaybackFailed, PositionUpdated, TrackEnded


@dataclass
class _PlaybackState:
    url: str | None = None
    playing: bool = False
    position: float = 0.0
    duration: float = 0.0
    volume: float = 1.0
    rate: float = 1.0


class FakeMediaBackend:
    """In-memory backend that simulates streaming playback progress.

    URLs listed in `failing_urls` raise `LoadError` on load. Per-URL durations
    can be supplied through `durations`; anything else uses
    `default_duration`.
    """

    def __init__(
        self,
        *,
        tick_interval_s: float = 0.25,
        default_duration: float = 180.0,
        durations: dict[str, float] | None = None,
        failing_urls: Iterable[str] = (),
    ) -> None:
        self._tick_interval = tick_interval_s
        self._default_duration = default_duration
        self._durations = dict(durations or {})
        self._failing_urls = set(failing_urls)
        self._state = _PlaybackState()
        self._handler: Callable[[BackendEvent], Awaitable[None]] | None = None
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.loaded_urls: list[str] = []

    @property
    def is_playing(self) -> bool:
        return self._state.playing

    @property
    def volume(self) -> float:
        return self._state.volume

    @property
    def rate(self) -> float:
        return self._state.rate

    @property
    def position(self) -> float:
        return self._state.position

    def set_event_handler(
        self, handler: Callable[[BackendEvent], Awaitable[None]]
    ) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._ticker_loop())

    async def shutdown(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def load(self, url: str) -> float:
        if url in self._failing_urls:
            raise LoadError(f"Failed to load audio: cannot open {url}")
        duration = self._durations.get(url, self._default_duration)
        async with self._lock:
            self._state.url = url
            self._state.playing = False
            self._state.position = 0.0
            self._state.duration = duration
        self.loaded_urls.append(url)
        return duration

    async def play(self) -> None:
        async with self._lock:
            if self._state.url is not None:
                self._state.playing = True

    async def pause(self) -> None:
        async with self._lock:
            self._state.playing = False

    async def seek(self, position: float) -> None:
        async with self._lock:
            pos = _clamp(position, 0.0, self._state.duration)
            self._state.position = pos
            duration = self._state.duration
        await self._emit(PositionUpdated(pos, duration))

    async def set_volume(self, volume: float) -> None:
        async with self._lock:
            self._state.volume = _clamp(volume, 0.0, 1.0)

    async def set_rate(self, rate: float) -> None:
        async with self._lock:
            self._state.rate = rate

    async def finish_track(self) -> None:
        """Jump to the end of the loaded stream and emit `TrackEnded`."""
        async with self._lock:
            self._state.position = self._state.duration
            self._state.playing = False
        await self._emit(TrackEnded())

    async def fail_playback(self, message: str) -> None:
        """Simulate a stream error on the loaded track."""
        async with self._lock:
            self._state.playing = False
        await self._emit(PlaybackFailed(message))

    async def _ticker_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                await asyncio.sleep(self._tick_interval)
                await self._tick()
        except asyncio.CancelledError:
            pass

    async def _tick(self) -> None:
        async with self._lock:
            if not self._state.playing:
                return
            duration = self._state.duration
            if duration <= 0:
                return
            next_pos = self._state.position + self._tick_interval * self._state.rate
            ended = next_pos >= duration
            if ended:
                next_pos = duration
                self._state.playing = False
            self._state.position = next_pos
        await self._emit(PositionUpdated(next_pos, duration))
        if ended:
            await self._emit(TrackEnded())

    async def _emit(self, event: BackendEvent) -> None:
        if self._handler is None:
            return
        await self._handler(event)


def _clamp(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(value, max_value))
