"""libVLC media backend for network streams.

All python-vlc calls happen on one worker thread. Coroutines enqueue
`_Command` records and await a loop future that the worker settles with
`call_soon_threadsafe`. Between commands the worker polls the player so state
transitions and position changes surface as backend events.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from streamlist.errors import LoadError, PlaybackError

from .media_backend import BackendEvent, PlaybackFailed, PositionUpdated, TrackEnded

logger = logging.getLogger(__name__)

EventHandler = Callable[[BackendEvent], Awaitable[None]]

# Returned by a command whose future is settled later (stream parsing).
_DEFERRED = object()
_WAKE = "wake"
_JOIN_TIMEOUT_S = 2.0
_PARSED_OK = frozenset({"done", "skipped"})
_PARSED_BAD = frozenset({"failed", "timeout"})


@dataclass
class _Command:
    name: str
    args: tuple[Any, ...]
    future: asyncio.Future[Any] | None


@dataclass
class _PendingLoad:
    url: str
    media: Any
    future: asyncio.Future[Any] | None


@dataclass
class _PollState:
    status: str = "idle"
    position_ms: int = -1


class VLCMediaBackend:
    """Media backend backed by a dedicated VLC thread.

    `load` resolves once libVLC has parsed the stream and knows its length;
    transport commands keep flowing through the queue in the meantime. A second
    `load` rejects the first with `LoadError`.
    """

    def __init__(self, *, poll_interval_ms: int = 200) -> None:
        self._poll_interval = poll_interval_ms / 1000
        self._handler: EventHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._commands: queue.Queue[_Command] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._halt = threading.Event()
        self._pending_load: _PendingLoad | None = None
        self._parse_flag: Any = None

    def set_event_handler(self, handler: EventHandler) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self._worker is not None:
            return
        loop = asyncio.get_running_loop()
        self._loop = loop
        started: asyncio.Future[None] = loop.create_future()
        self._halt.clear()
        self._worker = threading.Thread(
            target=self._run_worker,
            args=(started,),
            name="streamlist-vlc",
            daemon=True,
        )
        self._worker.start()
        await started

    async def shutdown(self) -> None:
        worker = self._worker
        if worker is None:
            return
        self._halt.set()
        self._commands.put(_Command(_WAKE, (), None))
        worker.join(timeout=_JOIN_TIMEOUT_S)
        self._worker = None
        self._loop = None
        self._abandon_outstanding()

    def _abandon_outstanding(self) -> None:
        """Fail every future the stopped worker will never settle."""
        pending, self._pending_load = self._pending_load, None
        if pending is not None and pending.future is not None:
            _resolve_future(
                pending.future,
                None,
                LoadError(f"Load abandoned at shutdown: {pending.url}"),
            )
        while True:
            try:
                cmd = self._commands.get_nowait()
            except queue.Empty:
                return
            if cmd.future is not None:
                _resolve_future(
                    cmd.future, None, RuntimeError("VLC backend shut down.")
                )

    async def load(self, url: str) -> float:
        return float(await self._submit("load", url))

    async def play(self) -> None:
        await self._submit("play")

    async def pause(self) -> None:
        await self._submit("pause")

    async def seek(self, position: float) -> None:
        await self._submit("seek", position)

    async def set_volume(self, volume: float) -> None:
        await self._submit("set_volume", volume)

    async def set_rate(self, rate: float) -> None:
        await self._submit("set_rate", rate)

    async def _submit(self, name: str, *args: Any) -> Any:
        loop = self._loop
        if loop is None:
            raise RuntimeError("VLC backend not started.")
        reply: asyncio.Future[Any] = loop.create_future()
        self._commands.put(_Command(name, args, reply))
        return await reply

    # Worker thread

    def _run_worker(self, started: asyncio.Future[None]) -> None:
        try:
            import vlc

            instance = vlc.Instance("--no-video")
            player = instance.media_player_new()
            self._parse_flag = vlc.MediaParseFlag.network
        except Exception as exc:  # pragma: no cover - depends on VLC install
            logger.error("libVLC initialisation failed: %s", exc)
            self._notify_future_exception(
                started,
                RuntimeError("VLC backend unavailable. Install VLC and retry."),
            )
            self._emit_event(PlaybackFailed(str(exc)))
            return

        self._notify_future_result(started, None)
        poll = _PollState()
        while not self._halt.is_set():
            self._drain_one(instance, player)
            self._check_pending_load()
            self._poll_player(player, poll)
        player.stop()

    def _drain_one(self, instance: Any, player: Any) -> None:
        try:
            cmd = self._commands.get(timeout=self._poll_interval)
        except queue.Empty:
            return
        if cmd.name == _WAKE:
            return
        try:
            outcome = self._handle_command(cmd, instance, player)
        except Exception as exc:
            logger.warning("VLC command %s failed: %s", cmd.name, exc)
            self._notify_future_exception(cmd.future, _command_failure(cmd, exc))
            return
        if outcome is not _DEFERRED:
            self._notify_future_result(cmd.future, outcome)

    def _poll_player(self, player: Any, poll: _PollState) -> None:
        status = _map_state(player)
        if status != poll.status:
            poll.status = status
            if status == "ended":
                self._emit_event(TrackEnded())
            elif status == "error" and self._pending_load is None:
                self._emit_event(PlaybackFailed("Playback failed: stream error"))
        if status not in ("playing", "paused"):
            return
        position_ms = max(player.get_time(), 0)
        if position_ms == poll.position_ms:
            return
        poll.position_ms = position_ms
        length_ms = max(player.get_length(), 0)
        self._emit_event(PositionUpdated(position_ms / 1000, length_ms / 1000))

    def _handle_command(self, cmd: _Command, instance: Any, player: Any) -> Any:
        if cmd.name == "load":
            return self._start_load(cmd, instance, player)
        action = _TRANSPORT.get(cmd.name)
        if action is None:
            raise ValueError(f"Unknown command {cmd.name}")
        action(player, *cmd.args)
        return None

    def _start_load(self, cmd: _Command, instance: Any, player: Any) -> object:
        (url,) = cmd.args
        superseded = self._pending_load
        if superseded is not None:
            self._notify_future_exception(
                superseded.future, LoadError(f"Load superseded: {superseded.url}")
            )
        media = instance.media_new(url)
        player.set_media(media)
        media.parse_with_options(self._parse_flag, 0)
        self._pending_load = _PendingLoad(url, media, cmd.future)
        return _DEFERRED

    def _check_pending_load(self) -> None:
        pending = self._pending_load
        if pending is None:
            return
        parsed = getattr(pending.media.get_parsed_status(), "name", "").lower()
        if parsed in _PARSED_OK:
            self._pending_load = None
            length_ms = max(pending.media.get_duration(), 0)
            logger.debug("Parsed stream %s (%d ms)", pending.url, length_ms)
            self._notify_future_result(pending.future, length_ms / 1000)
        elif parsed in _PARSED_BAD:
            self._pending_load = None
            self._notify_future_exception(
                pending.future,
                LoadError(f"Could not open stream {pending.url} ({parsed})"),
            )

    # Thread -> loop handoff

    def _emit_event(self, event: BackendEvent) -> None:
        handler, loop = self._handler, self._loop
        if handler is None or loop is None:
            return
        asyncio.run_coroutine_threadsafe(_deliver(handler, event), loop)

    def _notify_future_result(
        self, future: asyncio.Future[Any] | None, value: Any
    ) -> None:
        if future is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(_resolve_future, future, value, None)

    def _notify_future_exception(
        self, future: asyncio.Future[Any] | None, exc: Exception
    ) -> None:
        if future is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(_resolve_future, future, None, exc)


async def _deliver(handler: EventHandler, event: BackendEvent) -> None:
    await handler(event)


def _command_failure(cmd: _Command, exc: Exception) -> Exception:
    """Map a libVLC exception onto `LoadError` or `PlaybackError`."""
    if cmd.name == "load":
        failure: Exception = LoadError(f"VLC could not open stream: {exc}")
    else:
        verb = cmd.name.replace("_", " ")
        failure = PlaybackError(f"VLC could not {verb}: {exc}")
    failure.__cause__ = exc
    return failure


def _resolve_future(
    future: asyncio.Future[Any], value: Any, exc: Exception | None
) -> None:
    if future.done():
        return
    if exc is None:
        future.set_result(value)
    else:
        future.set_exception(exc)


_TRANSPORT: dict[str, Callable[..., None]] = {
    "play": lambda player: player.play(),
    "pause": lambda player: player.set_pause(1),
    "seek": lambda player, pos: player.set_time(int(float(pos) * 1000)),
    "set_volume": lambda player, vol: player.audio_set_volume(
        int(round(float(vol) * 100))
    ),
    "set_rate": lambda player, rate: player.set_rate(float(rate)),
}

_STATE_NAMES = {
    "playing": "playing",
    "paused": "paused",
    "ended": "ended",
    "error": "error",
    "opening": "loading",
    "buffering": "loading",
}


def _map_state(player: Any) -> str:
    """Collapse libVLC's `State` enum onto backend status names."""
    try:
        state = player.get_state()
    except Exception:
        return "error"
    return _STATE_NAMES.get(getattr(state, "name", "").lower(), "idle")
