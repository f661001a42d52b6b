"""Playback queue and transport state machine.

`PlaybackEngine` is the transport/queue authority. It owns a snapshot of the
songs handed to `load_queue`, drives a `MediaBackend`, reacts to backend
events, and publishes `PlaybackStateChanged` events to registered observers.

Transport states::

    idle -> loading -> playing <-> paused
                 \\-> failed (backend error; play/seek/load_queue retry)

Queue traversal has two deliberately different policies:

* `play_next()` (an explicit command) always wraps from the last track to the
  first, so it never produces an empty state.
* A natural end-of-track event on the last track calls `stop()`; on any other
  track it behaves exactly like `play_next()`.

Concurrency: an `asyncio.Lock` serializes every read-modify-write of the queue
and transport state. The lock is never held while awaiting `backend.load`, so
volume, rate and seek commands stay responsive during a load. Every load is
stamped with a generation number; a load whose generation was superseded by a
newer `load_queue`, track change or `stop` is discarded when it completes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Literal

from streamlist.errors import InvalidTrackError, format_user_error
from streamlist.events import PlaybackStateChanged, TrackChanged
from streamlist.models import Song
from streamlist.services.media_backend import (
    BackendEvent,
    MediaBackend,
    PlaybackFailed,
    PositionUpdated,
    TrackEnded,
)

logger = logging.getLogger(__name__)

STATUS = Literal["idle", "loading", "playing", "paused", "failed"]
VOLUME_MIN = 0.0
VOLUME_MAX = 1.0
RATE_MIN = 0.5
RATE_MAX = 2.0
DEFAULT_SKIP_S = 15.0
RESTART_THRESHOLD_S = 3.0
POSITION_EMIT_DELTA_S = 0.1

Observer = Callable[[object], Awaitable[None]]


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Immutable view of the queue and transport state exposed to observers."""

    status: STATUS = "idle"
    tracks: tuple[Song, ...] = ()
    current_index: int | None = None
    current_time: float = 0.0
    total_duration: float = 0.0
    volume: float = 1.0
    playback_rate: float = 1.0
    error: str | None = None

    @property
    def current_song(self) -> Song | None:
        if self.current_index is None or not self.tracks:
            return None
        return self.tracks[self.current_index]

    @property
    def is_playing(self) -> bool:
        return self.status == "playing"


class PlaybackEngine:
    """Owns the playback queue and emits state changes to observers."""

    def __init__(
        self,
        *,
        backend: MediaBackend,
        volume: float = 1.0,
        playback_rate: float = 1.0,
    ) -> None:
        self._backend = backend
        self._state = PlaybackSnapshot(
            volume=_clamp(volume, VOLUME_MIN, VOLUME_MAX),
            playback_rate=_clamp(playback_rate, RATE_MIN, RATE_MAX),
        )
        self._lock = asyncio.Lock()
        self._observers: list[Observer] = []
        self._generation = 0
        self._play_when_loaded = False
        self._pending_seek: float | None = None
        self._backend.set_event_handler(self._handle_backend_event)

    @property
    def state(self) -> PlaybackSnapshot:
        return self._state

    def add_observer(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        with suppress(ValueError):
            self._observers.remove(observer)

    async def start(self) -> None:
        """Start the backend and push the stored volume into it."""
        await self._backend.start()
        await self._backend.set_volume(self._state.volume)

    async def shutdown(self) -> None:
        """Invalidate pending loads and perform best-effort backend shutdown."""
        async with self._lock:
            self._generation += 1
        with suppress(Exception):
            await self._backend.shutdown()

    async def load_queue(
        self, songs: Sequence[Song], start_index: int = 0, *, autoplay: bool = False
    ) -> None:
        """Replace the queue with a snapshot of `songs` and load one track.

        Raises `InvalidTrackError` (after moving to `failed`) when the start
        track has no resolved stream URL yet.
        """
        tracks = tuple(songs)
        if not tracks:
            await self.stop()
            return
        index = _clamp_index(start_index, len(tracks))
        async with self._lock:
            self._state = replace(self._state, tracks=tracks)
            generation = self._begin_track_locked(index, autoplay=autoplay)
        logger.info(
            "Loaded queue of %d track(s) starting at index %d", len(tracks), index
        )
        await self._emit_state()
        message = await self._load_current(generation)
        if message is not None:
            raise InvalidTrackError(message)

    async def play(self) -> None:
        recover_generation: int | None = None
        async with self._lock:
            status = self._state.status
            if status == "playing" or self._state.current_song is None:
                return
            if status == "loading":
                self._play_when_loaded = True
                return
            if status == "failed":
                recover_generation = self._begin_track_locked(
                    self._state.current_index or 0, autoplay=True
                )
            else:
                self._state = replace(self._state, status="playing")
                rate = self._state.playback_rate
        if recover_generation is not None:
            await self._emit_state()
            await self._load_current(recover_generation)
            return
        if await self._backend_call("set playback rate", self._backend.set_rate(rate)):
            await self._backend_call("start playback", self._backend.play())
        await self._emit_state()

    async def pause(self) -> None:
        async with self._lock:
            if self._state.status != "playing":
                return
            self._state = replace(self._state, status="paused")
        await self._backend_call("pause playback", self._backend.pause())
        await self._emit_state()

    async def toggle_play_pause(self) -> None:
        if self._state.status == "playing":
            await self.pause()
        else:
            await self.play()

    async def stop(self) -> None:
        """Return to `idle`, drop the queue and rewind the backend."""
        async with self._lock:
            self._generation += 1
            had_track = self._state.current_song is not None
            self._play_when_loaded = False
            self._pending_seek = None
            self._state = replace(
                self._state,
                status="idle",
                tracks=(),
                current_index=None,
                current_time=0.0,
                total_duration=0.0,
                error=None,
            )
        if had_track:
            await self._backend_call(
                "pause playback", self._backend.pause(), mark_failed=False
            )
            await self._backend_call(
                "rewind playback", self._backend.seek(0.0), mark_failed=False
            )
            await self._emit_event(TrackChanged(None))
        await self._emit_state()

    async def clear_queue(self) -> None:
        await self.stop()

    async def seek(self, time: float) -> None:
        """Seek within the current track, clamped to `[0, total_duration]`."""
        recover_generation: int | None = None
        async with self._lock:
            status = self._state.status
            if status == "idle" or self._state.current_song is None:
                return
            if status == "loading":
                # Applied (and clamped) once the backend reports the duration.
                self._pending_seek = max(0.0, float(time))
                return
            if status == "failed":
                recover_generation = self._begin_track_locked(
                    self._state.current_index or 0, autoplay=False
                )
                self._pending_seek = max(0.0, float(time))
            else:
                position = _clamp(float(time), 0.0, self._state.total_duration)
                generation = self._generation
        if recover_generation is not None:
            await self._emit_state()
            await self._load_current(recover_generation)
            return
        if not await self._backend_call("seek", self._backend.seek(position)):
            return
        async with self._lock:
            if generation != self._generation:
                return
            self._state = replace(self._state, current_time=position)
        await self._emit_state()

    async def skip_forward(self, delta: float = DEFAULT_SKIP_S) -> None:
        state = self._state
        target = state.current_time + delta
        if state.total_duration > 0:
            target = min(target, state.total_duration)
        await self.seek(target)

    async def skip_backward(self, delta: float = DEFAULT_SKIP_S) -> None:
        await self.seek(max(self._state.current_time - delta, 0.0))

    async def set_volume(self, volume: float) -> None:
        async with self._lock:
            self._state = replace(
                self._state, volume=_clamp(float(volume), VOLUME_MIN, VOLUME_MAX)
            )
            volume = self._state.volume
        await self._backend_call("set volume", self._backend.set_volume(volume))
        await self._emit_state()

    async def set_playback_rate(self, rate: float) -> None:
        """Store the rate; push it to the backend only while playing."""
        async with self._lock:
            self._state = replace(
                self._state, playback_rate=_clamp(float(rate), RATE_MIN, RATE_MAX)
            )
            rate = self._state.playback_rate
            playing = self._state.status == "playing"
        if playing:
            await self._backend_call("set playback rate", self._backend.set_rate(rate))
        await self._emit_state()

    async def play_next(self) -> None:
        """Advance one track, wrapping from the last track to the first."""
        async with self._lock:
            count = len(self._state.tracks)
            if not count:
                return
            index = ((self._state.current_index or 0) + 1) % count
            generation = self._begin_track_locked(index, autoplay=True)
        await self._emit_state()
        await self._load_current(generation)

    async def play_previous(self) -> None:
        """Restart the current track past 3s, otherwise step back (wrapping)."""
        async with self._lock:
            count = len(self._state.tracks)
            if not count:
                return
            restart = self._state.current_time > RESTART_THRESHOLD_S
            if not restart:
                current = self._state.current_index or 0
                index = current - 1 if current > 0 else count - 1
                generation = self._begin_track_locked(index, autoplay=True)
        if restart:
            await self.seek(0.0)
            return
        await self._emit_state()
        await self._load_current(generation)

    def _begin_track_locked(self, index: int, *, autoplay: bool) -> int:
        """Point the queue at `index` in `loading` state; caller holds the lock."""
        song = self._state.tracks[index]
        self._generation += 1
        self._play_when_loaded = autoplay
        self._pending_seek = None
        self._state = replace(
            self._state,
            status="loading",
            current_index=index,
            current_time=0.0,
            total_duration=max(0.0, song.duration),
            error=None,
        )
        return self._generation

    async def _load_current(self, generation: int) -> str | None:
        """Load the current track for `generation`.

        Returns a user-facing message when the track has no resolved stream URL;
        backend load failures are recorded in state instead.
        """
        async with self._lock:
            if generation != self._generation:
                return None
            song = self._state.current_song
        if song is None:
            return None
        if not song.resolved_stream_url:
            message = format_user_error(
                what_failed=f"Cannot play '{song.title}'.",
                likely_cause="The song's stream URL has not been resolved yet.",
                next_step="Wait for resolution (or re-resolve the song) and retry.",
            )
            if await self._fail_if_current(generation, message):
                return message
            return None
        try:
            duration = await self._backend.load(song.resolved_stream_url)
        except Exception as exc:
            logger.warning("Failed to load %s: %s", song.resolved_stream_url, exc)
            await self._fail_if_current(
                generation,
                format_user_error(
                    what_failed=f"Failed to load '{song.title}'.",
                    likely_cause="The media backend could not open the stream.",
                    next_step="Check the network connection and retry playback.",
                    detail=str(exc),
                ),
            )
            return None
        async with self._lock:
            if generation != self._generation:
                logger.debug(
                    "Discarding stale load result for %s (generation %d, now %d)",
                    song.id,
                    generation,
                    self._generation,
                )
                return None
            total = duration if duration > 0 else max(0.0, song.duration)
            autoplay = self._play_when_loaded
            pending_seek = self._pending_seek
            self._play_when_loaded = False
            self._pending_seek = None
            position = _clamp(pending_seek or 0.0, 0.0, total)
            self._state = replace(
                self._state,
                status="playing" if autoplay else "paused",
                total_duration=total,
                current_time=position,
            )
            rate = self._state.playback_rate
        if position > 0:
            await self._backend_call("seek", self._backend.seek(position))
        if autoplay and await self._backend_call(
            "set playback rate", self._backend.set_rate(rate)
        ):
            await self._backend_call("start playback", self._backend.play())
        await self._emit_event(TrackChanged(song))
        await self._emit_state()
        return None

    async def _fail_if_current(self, generation: int, message: str) -> bool:
        async with self._lock:
            if generation != self._generation:
                return False
            self._play_when_loaded = False
            self._pending_seek = None
            self._state = replace(self._state, status="failed", error=message)
        await self._emit_state()
        return True

    async def _backend_call(
        self, what: str, call: Awaitable[None], *, mark_failed: bool = True
    ) -> bool:
        """Await a backend primitive; failures become engine state, not exceptions."""
        try:
            await call
        except Exception as exc:
            logger.warning("Media backend failed to %s: %s", what, exc)
            if not mark_failed:
                return False
            async with self._lock:
                if self._state.current_song is not None:
                    self._state = replace(
                        self._state,
                        status="failed",
                        error=format_user_error(
                            what_failed=f"Media backend failed to {what}.",
                            likely_cause="Backend runtime or stream access failure.",
                            next_step="Retry playback or reload the queue.",
                            detail=str(exc),
                        ),
                    )
            await self._emit_state()
            return False
        return True

    async def _handle_backend_event(self, event: BackendEvent) -> None:
        """Fold backend events into state and trigger end-of-track handling."""
        emit = False
        track_ended = False
        async with self._lock:
            status = self._state.status
            if isinstance(event, PositionUpdated):
                if status in {"playing", "paused"}:
                    duration = max(0.0, event.duration)
                    if duration > 0 and duration != self._state.total_duration:
                        self._state = replace(self._state, total_duration=duration)
                        emit = True
                    position = max(0.0, event.position)
                    if duration > 0:
                        position = min(position, duration)
                    last = self._state.current_time
                    if position != last:
                        self._state = replace(self._state, current_time=position)
                        if abs(position - last) >= POSITION_EMIT_DELTA_S:
                            emit = True
            elif isinstance(event, TrackEnded):
                # Ends arriving mid-load belong to the previous track.
                track_ended = status in {"playing", "paused"}
            elif isinstance(event, PlaybackFailed):
                if status in {"loading", "playing", "paused"}:
                    self._generation += 1
                    self._play_when_loaded = False
                    self._state = replace(
                        self._state,
                        status="failed",
                        error=format_user_error(
                            what_failed="Playback failed.",
                            likely_cause="Stream interrupted or could not be decoded.",
                            next_step="Press play to retry the current track.",
                            detail=event.message,
                        ),
                    )
                    emit = True
        if emit:
            await self._emit_state()
        if track_ended:
            await self._handle_track_end()

    async def _handle_track_end(self) -> None:
        """Stop after the last track; otherwise advance like `play_next()`."""
        async with self._lock:
            count = len(self._state.tracks)
            index = self._state.current_index
        if not count or index is None:
            return
        if index >= count - 1:
            logger.info("Queue exhausted after track %d; stopping", index)
            await self.stop()
            return
        await self.play_next()

    async def _emit_state(self) -> None:
        await self._emit_event(PlaybackStateChanged(self._state))

    async def _emit_event(self, event: object) -> None:
        for observer in list(self._observers):
            try:
                await observer(event)
            except Exception:
                logger.exception("Playback observer failed handling %s", event)


def _clamp(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(value, max_value))


def _clamp_index(index: int, count: int) -> int:
    return max(0, min(int(index), count - 1))
