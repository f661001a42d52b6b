"""Media backend contracts and event payloads.

`PlaybackEngine` depends on this protocol to stay backend-agnostic. Concrete
implementations (fake/VLC) translate engine-specific behavior into these shared
commands and events. Times are seconds as floats throughout.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class BackendEvent:
    """Marker base type for backend-originated events."""

    pass


@dataclass(frozen=True)
class PositionUpdated(BackendEvent):
    """Periodic transport position update."""

    position: float
    duration: float


@dataclass(frozen=True)
class TrackEnded(BackendEvent):
    """The loaded stream played through to its end."""

    pass


@dataclass(frozen=True)
class PlaybackFailed(BackendEvent):
    """The loaded stream failed while playing."""

    message: str


class MediaBackend(Protocol):
    """Media engine protocol consumed by `PlaybackEngine`.

    `load` raises `LoadError` when the stream cannot be opened and returns the
    stream duration in seconds (`0.0` when unknown). A successful `load` leaves
    the backend paused at position zero.
    """

    def set_event_handler(
        self, handler: Callable[[BackendEvent], Awaitable[None]]
    ) -> None: ...

    async def start(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def load(self, url: str) -> float: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def seek(self, position: float) -> None: ...

    async def set_volume(self, volume: float) -> None: ...

    async def set_rate(self, rate: float) -> None: ...
