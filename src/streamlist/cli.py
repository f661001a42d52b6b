"""Command-line interface for streamlist."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .errors import StreamlistError
from .events import PlaybackStateChanged, TrackChanged
from .logging_utils import setup_logging
from .models import Playlist, Song
from .paths import db_path, log_dir, state_path
from .runtime_config import BACKEND_NAMES, resolve_backend_name, resolve_log_level
from .services.catalog_service import CatalogService
from .services.catalog_store import SqliteCatalogStore
from .services.fake_backend import FakeMediaBackend
from .services.media_backend import MediaBackend
from .services.playback_engine import PlaybackEngine
from .services.remote_control import LoggingNowPlayingSurface, RemoteControlBridge
from .services.url_resolver import YouTubeUrlResolver
from .services.vlc_backend import VLCMediaBackend
from .state_store import load_state_with_notice, save_state
from .utils.time_format import format_time, format_time_short

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamlist",
        description="Manage streaming playlists and play them from the terminal.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument("--db", help="Catalog database path")
    commands = parser.add_subparsers(dest="command", required=True)

    playlists = commands.add_parser("playlists", help="Manage playlists")
    playlist_actions = playlists.add_subparsers(dest="action", required=True)
    playlist_actions.add_parser("list", help="List playlists in order")
    create = playlist_actions.add_parser("create", help="Create a playlist")
    create.add_argument("name")
    rename = playlist_actions.add_parser("rename", help="Rename a playlist")
    rename.add_argument("playlist_id")
    rename.add_argument("name")
    delete = playlist_actions.add_parser("delete", help="Delete a playlist")
    delete.add_argument("playlist_id")
    reorder = playlist_actions.add_parser(
        "reorder", help="Reorder playlists (pass every playlist id)"
    )
    reorder.add_argument("playlist_ids", nargs="+")

    songs = commands.add_parser("songs", help="Manage songs within a playlist")
    song_actions = songs.add_subparsers(dest="action", required=True)
    song_list = song_actions.add_parser("list", help="List a playlist's songs")
    song_list.add_argument("playlist_id")
    add = song_actions.add_parser("add", help="Add a song by source URL")
    add.add_argument("playlist_id")
    add.add_argument("title")
    add.add_argument("url")
    remove = song_actions.add_parser("remove", help="Remove a song")
    remove.add_argument("song_id")
    song_reorder = song_actions.add_parser(
        "reorder", help="Reorder songs (pass every song id of the playlist)"
    )
    song_reorder.add_argument("playlist_id")
    song_reorder.add_argument("song_ids", nargs="+")
    resolve = song_actions.add_parser("resolve", help="Re-resolve a song's stream")
    resolve.add_argument("song_id")

    play = commands.add_parser("play", help="Play a playlist until it ends")
    play.add_argument("playlist_id")
    play.add_argument("--start", type=int, default=0, help="Index of the first song")
    play.add_argument(
        "--backend",
        choices=BACKEND_NAMES,
        help="Playback backend to use (fake or vlc).",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    out = Console()
    err = Console(stderr=True)
    try:
        level = resolve_log_level(verbose=args.verbose, quiet=args.quiet)
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
        )
        logger.debug("Starting streamlist CLI command %s", args.command)
        return asyncio.run(_dispatch(args, out))
    except StreamlistError as exc:
        logger.debug("Command failed: %s", exc)
        err.print(escape(str(exc)))
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return 1


async def _dispatch(args: argparse.Namespace, out: Console) -> int:
    store = SqliteCatalogStore(Path(args.db) if args.db else db_path())
    await store.initialize()
    service = CatalogService(store=store, resolver=YouTubeUrlResolver())
    try:
        if args.command == "playlists":
            await _run_playlists(service, args, out)
        elif args.command == "songs":
            await _run_songs(service, args, out)
        else:
            await _run_play(service, args, out)
    finally:
        await service.aclose()
    return 0


async def _run_playlists(
    service: CatalogService, args: argparse.Namespace, out: Console
) -> None:
    action = args.action
    if action == "list":
        out.print(_playlists_table(await service.list_playlists()))
    elif action == "create":
        playlist = await service.create_playlist(args.name)
        out.print(f"Created playlist {escape(playlist.name)} ({playlist.id})")
    elif action == "rename":
        playlist = await service.rename_playlist(args.playlist_id, args.name)
        out.print(f"Renamed playlist {playlist.id} to {escape(playlist.name)}")
    elif action == "delete":
        await service.delete_playlist(args.playlist_id)
        out.print(f"Deleted playlist {args.playlist_id}")
    elif action == "reorder":
        out.print(_playlists_table(await service.reorder_playlists(args.playlist_ids)))


async def _run_songs(
    service: CatalogService, args: argparse.Namespace, out: Console
) -> None:
    action = args.action
    if action == "list":
        out.print(_songs_table(await service.list_songs(args.playlist_id)))
    elif action == "add":
        song = await service.add_song(args.playlist_id, args.title, args.url)
        await service.wait_for_background_tasks()
        song = await service.get_song(song.id)
        status = "resolved" if song.is_resolved else "unresolved"
        out.print(f"Added song {escape(song.title)} ({song.id}, {status})")
    elif action == "remove":
        await service.remove_song(args.song_id)
        out.print(f"Removed song {args.song_id}")
    elif action == "reorder":
        songs = await service.reorder_songs(args.playlist_id, args.song_ids)
        out.print(_songs_table(songs))
    elif action == "resolve":
        song = await service.resolve_song(args.song_id)
        out.print(f"Resolved {escape(song.title)} ({format_time(song.duration)})")


async def _run_play(
    service: CatalogService, args: argparse.Namespace, out: Console
) -> None:
    path = state_path()
    state, notice = load_state_with_notice(path)
    if notice:
        logger.warning(notice)
    playlist = await service.get_playlist(args.playlist_id)
    backend_name = resolve_backend_name(args.backend, state.playback_backend)
    engine = PlaybackEngine(
        backend=_build_backend(backend_name),
        volume=state.volume,
        playback_rate=state.playback_rate,
    )
    bridge = RemoteControlBridge(engine=engine, surface=LoggingNowPlayingSurface())
    finished = asyncio.Event()
    failure: list[str] = []

    async def report(event: object) -> None:
        if isinstance(event, TrackChanged) and event.song is not None:
            out.print(
                f"Now playing: {event.song.title} "
                f"[{format_time(engine.state.total_duration)}]",
                markup=False,
            )
        elif isinstance(event, PlaybackStateChanged):
            if event.state.status == "failed":
                failure.append(event.state.error or "Playback failed.")
                finished.set()
            elif event.state.status == "idle":
                finished.set()

    engine.add_observer(report)
    bridge.attach()
    await engine.start()
    try:
        await engine.load_queue(playlist.songs, args.start, autoplay=True)
        await finished.wait()
    finally:
        bridge.detach()
        engine.remove_observer(report)
        await engine.shutdown()
        save_state(
            path,
            replace(
                state,
                last_playlist_id=playlist.id,
                volume=engine.state.volume,
                playback_rate=engine.state.playback_rate,
                playback_backend=backend_name,
            ),
        )
    if failure:
        raise StreamlistError(failure[0])
    out.print(f"Finished playlist {escape(playlist.name)}")


def _build_backend(name: str) -> MediaBackend:
    if name == "fake":
        return FakeMediaBackend()
    return VLCMediaBackend()


def _playlists_table(playlists: Sequence[Playlist]) -> Table:
    table = Table(title="Playlists")
    table.add_column("#", justify="right")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Songs", justify="right")
    for playlist in playlists:
        table.add_row(
            str(playlist.order),
            playlist.id,
            escape(playlist.name),
            str(len(playlist.songs)),
        )
    return table


def _songs_table(songs: Sequence[Song]) -> Table:
    table = Table(title="Songs")
    table.add_column("#", justify="right")
    table.add_column("ID", no_wrap=True)
    table.add_column("Title")
    table.add_column("Duration", justify="right")
    table.add_column("Stream")
    for song in songs:
        table.add_row(
            str(song.order),
            song.id,
            escape(song.title),
            format_time_short(song.duration),
            "resolved" if song.is_resolved else "pending",
        )
    return table


if __name__ == "__main__":
    raise SystemExit(main())
