"""Bridge between the playback engine and a "now playing" remote surface.

Outbound, every `PlaybackStateChanged` is mirrored to the surface as a
`NowPlayingInfo` (or a `clear()` when no song is current). Inbound, remote
transport commands map 1:1 onto engine commands. Audio session notifications
(interruptions, output route changes) are translated into pause/resume.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

from streamlist.events import PlaybackStateChanged
from streamlist.services.playback_engine import DEFAULT_SKIP_S, PlaybackEngine

logger = logging.getLogger(__name__)

RemoteCommand = Literal[
    "play",
    "pause",
    "toggle",
    "skip_forward",
    "skip_backward",
    "seek_to",
    "next",
    "previous",
]
CommandStatus = Literal["success", "command_failed"]
REMOTE_COMMANDS: tuple[RemoteCommand, ...] = (
    "play",
    "pause",
    "toggle",
    "skip_forward",
    "skip_backward",
    "seek_to",
    "next",
    "previous",
)


@dataclass(frozen=True)
class NowPlayingInfo:
    """Payload pushed to the now-playing surface."""

    title: str
    current_time: float
    duration: float
    is_playing: bool


class NowPlayingSurface(Protocol):
    """OS-level now-playing display the bridge publishes to."""

    async def update(self, info: NowPlayingInfo) -> None: ...

    async def clear(self) -> None: ...


class RemoteControlBridge:
    """Maps remote transport commands onto a `PlaybackEngine` and mirrors state."""

    def __init__(
        self,
        *,
        engine: PlaybackEngine,
        surface: NowPlayingSurface,
        skip_interval_s: float = DEFAULT_SKIP_S,
    ) -> None:
        self._engine = engine
        self._surface = surface
        self._skip_interval = skip_interval_s
        self._last_info: NowPlayingInfo | None = None
        self._attached = False

    @property
    def skip_interval(self) -> float:
        return self._skip_interval

    def attach(self) -> None:
        if self._attached:
            return
        self._engine.add_observer(self._on_engine_event)
        self._attached = True

    def detach(self) -> None:
        self._engine.remove_observer(self._on_engine_event)
        self._attached = False

    async def handle_command(
        self, command: str, position: float | None = None
    ) -> CommandStatus:
        """Apply one remote command; unknown commands and bad args fail softly."""
        engine = self._engine
        if command == "play":
            await engine.play()
        elif command == "pause":
            await engine.pause()
        elif command == "toggle":
            await engine.toggle_play_pause()
        elif command == "skip_forward":
            await engine.skip_forward(self._skip_interval)
        elif command == "skip_backward":
            await engine.skip_backward(self._skip_interval)
        elif command == "seek_to":
            if position is None:
                logger.warning("Remote seek_to command without a position")
                return "command_failed"
            await engine.seek(position)
        elif command == "next":
            await engine.play_next()
        elif command == "previous":
            await engine.play_previous()
        else:
            logger.warning("Unsupported remote command: %s", command)
            return "command_failed"
        return "success"

    async def handle_interruption_began(self) -> None:
        await self._engine.pause()

    async def handle_interruption_ended(self, *, should_resume: bool) -> None:
        if should_resume:
            await self._engine.play()

    async def handle_route_change(self, reason: str) -> None:
        if reason == "device_disconnected":
            await self._engine.pause()

    async def _on_engine_event(self, event: object) -> None:
        if not isinstance(event, PlaybackStateChanged):
            return
        state = event.state
        song = state.current_song
        if song is None:
            if self._last_info is not None:
                self._last_info = None
                await self._surface.clear()
            return
        info = NowPlayingInfo(
            title=song.title,
            current_time=state.current_time,
            duration=state.total_duration,
            is_playing=state.is_playing,
        )
        if info == self._last_info:
            return
        self._last_info = info
        await self._surface.update(info)


class LoggingNowPlayingSurface:
    """Surface that records now-playing updates in the application log."""

    async def update(self, info: NowPlayingInfo) -> None:
        logger.debug(
            "Now playing: %s (%.1fs/%.1fs, playing=%s)",
            info.title,
            info.current_time,
            info.duration,
            info.is_playing,
        )

    async def clear(self) -> None:
        logger.debug("Now playing cleared")
