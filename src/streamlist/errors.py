"""Error taxonomy shared by the catalog, resolver and playback layers.

Catalog and resolver operations raise these directly. Media backend failures
(`LoadError`, `PlaybackError`) are caught by `PlaybackEngine` and folded into
its observable state instead of escaping a command.
"""

from __future__ import annotations


def format_user_error(
    *, what_failed: str, likely_cause: str, next_step: str, detail: str | None = None
) -> str:
    message = f"{what_failed}\nLikely cause: {likely_cause}\nNext step: {next_step}"
    if detail:
        message = f"{message}\nDetails: {detail}"
    return message


class StreamlistError(Exception):
    """Base class for all errors raised by streamlist."""


class ValidationError(StreamlistError):
    """Input rejected before any mutation was attempted."""


class NotFoundError(StreamlistError):
    """A referenced playlist or song does not exist (any more)."""


class StorageError(StreamlistError):
    """The persistence gateway failed to complete an operation."""


class UpdateError(StorageError):
    """A multi-row update could not be applied atomically and was rolled back."""


class ResolutionError(StreamlistError):
    """A source URL could not be resolved into a playable stream URL."""


class LoadError(StreamlistError):
    """The media backend could not open the requested stream."""


class PlaybackError(StreamlistError):
    """The media backend failed while playing an already loaded stream."""


class InvalidTrackError(StreamlistError):
    """A queued track cannot be played because it has no resolved stream URL."""
