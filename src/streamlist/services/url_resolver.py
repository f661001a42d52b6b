"""Source URL validation and resolution into playable stream URLs.

`UrlResolver` is the contract the catalog depends on. `YouTubeUrlResolver`
validates YouTube watch/short links, extracts video ids, and resolves a direct
audio stream URL through yt-dlp. Successful resolutions are cached per source
URL in a small LRU.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import parse_qs, urlsplit

import yt_dlp

from streamlist.errors import ResolutionError
from streamlist.utils.async_utils import run_blocking

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = frozenset(
    {"www.youtube.com", "youtube.com", "m.youtube.com", "youtu.be"}
)
DEFAULT_CACHE_SIZE = 50
YDL_OPTIONS: dict[str, Any] = {
    "format": "bestaudio/best",
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    "skip_download": True,
}


@dataclass(frozen=True)
class ResolvedStream:
    """Playable stream URL plus duration in seconds when the source reports it."""

    stream_url: str
    duration: float | None = None


StreamExtractor = Callable[[str], ResolvedStream]


class UrlResolver(Protocol):
    """Resolver contract consumed by `CatalogService`."""

    def validate(self, source_url: str) -> bool: ...

    def extract_id(self, source_url: str) -> str | None: ...

    async def resolve(self, source_url: str) -> ResolvedStream: ...


def extract_stream_with_yt_dlp(source_url: str) -> ResolvedStream:
    """Ask yt-dlp for the best audio-only stream without downloading it."""
    try:
        with yt_dlp.YoutubeDL(YDL_OPTIONS) as ydl:
            info = ydl.extract_info(source_url, download=False)
    except yt_dlp.utils.DownloadError as exc:
        raise ResolutionError(f"Failed to extract audio URL: {exc}") from exc
    if not isinstance(info, dict):
        raise ResolutionError("Failed to extract audio URL: empty extractor result")
    stream_url = info.get("url") or _best_format_url(info.get("formats") or [])
    if not stream_url:
        raise ResolutionError("Failed to extract audio URL: no playable format")
    duration = info.get("duration")
    return ResolvedStream(
        stream_url=str(stream_url),
        duration=float(duration) if isinstance(duration, (int, float)) else None,
    )


def _best_format_url(formats: list[dict[str, Any]]) -> str | None:
    # yt-dlp sorts formats worst -> best; prefer the last audio-only entry.
    audio_only = [
        fmt for fmt in formats if fmt.get("url") and fmt.get("vcodec") == "none"
    ]
    candidates = audio_only or [fmt for fmt in formats if fmt.get("url")]
    if not candidates:
        return None
    return str(candidates[-1]["url"])


class YouTubeUrlResolver:
    """Validates and resolves YouTube links.

    Passing `extractor=None` yields a resolver that validates but reports every
    resolution as not implemented, which keeps songs in the unresolved state.
    """

    def __init__(
        self,
        *,
        extractor: StreamExtractor | None = extract_stream_with_yt_dlp,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        if cache_size < 1:
            raise ValueError("cache_size must be >= 1")
        self._extractor = extractor
        self._cache_size = cache_size
        self._cache: OrderedDict[str, ResolvedStream] = OrderedDict()

    def validate(self, source_url: str) -> bool:
        parts = _split(source_url)
        if parts is None:
            return False
        host, path, query = parts
        if host not in YOUTUBE_HOSTS:
            return False
        if host == "youtu.be":
            return bool(path.strip("/"))
        return "v=" in query or "/watch" in path

    def extract_id(self, source_url: str) -> str | None:
        parts = _split(source_url)
        if parts is None:
            return None
        host, path, query = parts
        if "youtu.be" in host:
            segments = [segment for segment in path.split("/") if segment]
            return segments[-1] if segments else None
        values = parse_qs(query).get("v")
        return values[0] if values else None

    async def resolve(self, source_url: str) -> ResolvedStream:
        if not self.validate(source_url):
            raise ResolutionError("Invalid YouTube URL")
        cached = self._cache.get(source_url)
        if cached is not None:
            self._cache.move_to_end(source_url)
            return cached
        video_id = self.extract_id(source_url)
        if video_id is None:
            raise ResolutionError("Could not extract video ID")
        if self._extractor is None:
            raise ResolutionError(
                "Audio extraction not yet implemented for this resolver"
            )
        logger.debug("Resolving stream for video id %s", video_id)
        resolved = await run_blocking(self._extractor, source_url)
        self._remember(source_url, resolved)
        return resolved

    def cached(self, source_url: str) -> ResolvedStream | None:
        return self._cache.get(source_url)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _remember(self, source_url: str, resolved: ResolvedStream) -> None:
        self._cache[source_url] = resolved
        self._cache.move_to_end(source_url)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)


def _split(source_url: str) -> tuple[str, str, str] | None:
    if not source_url or any(ch.isspace() for ch in source_url):
        return None
    try:
        parts = urlsplit(source_url)
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if not host:
        return None
    return host, parts.path, parts.query
