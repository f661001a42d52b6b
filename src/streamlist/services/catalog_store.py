"""Persistence gateway for playlists and songs.

`CatalogGateway` is the storage contract consumed by `CatalogService`;
`SqliteCatalogStore` is the SQLite implementation. The public API is async but
all DB work is synchronous and dispatched through `run_blocking(...)` so the
event loop driving playback never blocks on disk IO.

Gateway methods return `None`/`False` for missing rows and raise
`StorageError` for storage failures. Mapping absent rows onto caller-facing
errors is the catalog service's job.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol, TypeVar

from streamlist.db.schema import create_schema
from streamlist.errors import StorageError, format_user_error
from streamlist.models import Playlist, Song
from streamlist.services.sqlite_retry import run_with_sqlite_lock_retry
from streamlist.utils.async_utils import run_blocking

T = TypeVar("T")

_PERF_WARN_MS = 50.0
logger = logging.getLogger(__name__)

_SONG_COLUMNS = """
    id, playlist_id, title, source_url, resolved_stream_url, duration,
    added_at, sort_order
"""


class CatalogGateway(Protocol):
    """Abstract CRUD store for playlist/song records with stable ordering."""

    async def initialize(self) -> None: ...

    async def append_playlist(
        self, playlist_id: str, name: str, created_at: datetime
    ) -> Playlist: ...

    async def get_playlist(self, playlist_id: str) -> Playlist | None: ...

    async def list_playlists(self) -> list[Playlist]: ...

    async def count_playlists(self) -> int: ...

    async def update_playlist_name(
        self, playlist_id: str, name: str, modified_at: datetime
    ) -> Playlist | None: ...

    async def delete_playlist(self, playlist_id: str) -> bool: ...

    async def apply_playlist_order(self, ordered_ids: Sequence[str]) -> bool: ...

    async def append_song(
        self,
        playlist_id: str,
        song_id: str,
        title: str,
        source_url: str,
        added_at: datetime,
    ) -> Song | None: ...

    async def get_song(self, song_id: str) -> Song | None: ...

    async def list_songs(self, playlist_id: str) -> list[Song]: ...

    async def count_songs(self, playlist_id: str) -> int: ...

    async def delete_song(self, song_id: str) -> bool: ...

    async def apply_song_order(
        self, playlist_id: str, ordered_ids: Sequence[str]
    ) -> bool: ...

    async def update_song_stream(
        self, song_id: str, stream_url: str, duration: float | None
    ) -> Song | None: ...


class SqliteCatalogStore:
    """SQLite-backed `CatalogGateway`.

    Each call uses a fresh SQLite connection to avoid cross-thread access.
    Multi-row writes run inside `BEGIN IMMEDIATE` so readers never observe a
    half-applied reorder or renumber.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        await run_blocking(self._guarded, "initialize", self._initialize_sync)

    async def append_playlist(
        self, playlist_id: str, name: str, created_at: datetime
    ) -> Playlist:
        return await run_blocking(
            self._guarded,
            "append_playlist",
            self._append_playlist_sync,
            playlist_id,
            name,
            created_at,
        )

    async def get_playlist(self, playlist_id: str) -> Playlist | None:
        return await run_blocking(
            self._guarded, "get_playlist", self._get_playlist_sync, playlist_id
        )

    async def list_playlists(self) -> list[Playlist]:
        return await run_blocking(
            self._guarded, "list_playlists", self._list_playlists_sync
        )

    async def count_playlists(self) -> int:
        return await run_blocking(
            self._guarded, "count_playlists", self._count_playlists_sync
        )

    async def update_playlist_name(
        self, playlist_id: str, name: str, modified_at: datetime
    ) -> Playlist | None:
        return await run_blocking(
            self._guarded,
            "update_playlist_name",
            self._update_playlist_name_sync,
            playlist_id,
            name,
            modified_at,
        )

    async def delete_playlist(self, playlist_id: str) -> bool:
        return await run_blocking(
            self._guarded, "delete_playlist", self._delete_playlist_sync, playlist_id
        )

    async def apply_playlist_order(self, ordered_ids: Sequence[str]) -> bool:
        return await run_blocking(
            self._guarded,
            "apply_playlist_order",
            self._apply_playlist_order_sync,
            list(ordered_ids),
        )

    async def append_song(
        self,
        playlist_id: str,
        song_id: str,
        title: str,
        source_url: str,
        added_at: datetime,
    ) -> Song | None:
        return await run_blocking(
            self._guarded,
            "append_song",
            self._append_song_sync,
            playlist_id,
            song_id,
            title,
            source_url,
            added_at,
        )

    async def get_song(self, song_id: str) -> Song | None:
        return await run_blocking(
            self._guarded, "get_song", self._get_song_sync, song_id
        )

    async def list_songs(self, playlist_id: str) -> list[Song]:
        return await run_blocking(
            self._guarded, "list_songs", self._list_songs_sync, playlist_id
        )

    async def count_songs(self, playlist_id: str) -> int:
        return await run_blocking(
            self._guarded, "count_songs", self._count_songs_sync, playlist_id
        )

    async def delete_song(self, song_id: str) -> bool:
        return await run_blocking(
            self._guarded, "delete_song", self._delete_song_sync, song_id
        )

    async def apply_song_order(
        self, playlist_id: str, ordered_ids: Sequence[str]
    ) -> bool:
        return await run_blocking(
            self._guarded,
            "apply_song_order",
            self._apply_song_order_sync,
            playlist_id,
            list(ordered_ids),
        )

    async def update_song_stream(
        self, song_id: str, stream_url: str, duration: float | None
    ) -> Song | None:
        return await run_blocking(
            self._guarded,
            "update_song_stream",
            self._update_song_stream_sync,
            song_id,
            stream_url,
            duration,
        )

    def _guarded(self, op_name: str, func: Callable[..., T], *args: object) -> T:
        """Run one sync operation with lock retry and `StorageError` mapping."""
        start = time.perf_counter()
        try:
            result = run_with_sqlite_lock_retry(
                lambda: func(*args), op_name=f"catalog_store.{op_name}"
            )
        except sqlite3.Error as exc:
            logger.error("Catalog store operation %s failed: %s", op_name, exc)
            raise StorageError(
                format_user_error(
                    what_failed=f"Catalog storage operation '{op_name}' failed.",
                    likely_cause="Database file is locked, unreadable, or corrupt.",
                    next_step=f"Verify access to '{self._db_path}' and retry.",
                    detail=str(exc),
                )
            ) from exc
        _log_slow_db_op(op_name, start=start)
        return result

    def _connect(self) -> sqlite3.Connection:
        """Create a fresh SQLite connection configured for concurrent app usage."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _initialize_sync(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            create_schema(conn)
            journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
            foreign_keys = conn.execute("PRAGMA foreign_keys").fetchone()[0]
            logger.info(
                "SQLite pragmas: journal_mode=%s foreign_keys=%s",
                journal_mode,
                foreign_keys,
            )

    def _append_playlist_sync(
        self, playlist_id: str, name: str, created_at: datetime
    ) -> Playlist:
        stamp = created_at.isoformat()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            order = int(conn.execute("SELECT COUNT(*) FROM playlists").fetchone()[0])
            conn.execute(
                """
                INSERT INTO playlists (id, name, sort_order, created_at, modified_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (playlist_id, name, order, stamp, stamp),
            )
        return Playlist(
            id=playlist_id,
            name=name,
            created_at=created_at,
            modified_at=created_at,
            order=order,
        )

    def _get_playlist_sync(self, playlist_id: str) -> Playlist | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM playlists WHERE id = ?", (playlist_id,)
            ).fetchone()
            if row is None:
                return None
            songs = _fetch_songs(conn, playlist_id)
        return _playlist_from_row(row, songs)

    def _list_playlists_sync(self) -> list[Playlist]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM playlists ORDER BY sort_order ASC"
            ).fetchall()
            song_rows = conn.execute(
                f"SELECT {_SONG_COLUMNS} FROM songs ORDER BY playlist_id, sort_order"
            ).fetchall()
        songs_by_playlist: dict[str, list[Song]] = {}
        for song_row in song_rows:
            song = _song_from_row(song_row)
            songs_by_playlist.setdefault(song.playlist_id, []).append(song)
        return [
            _playlist_from_row(row, songs_by_playlist.get(str(row["id"]), []))
            for row in rows
        ]

    def _count_playlists_sync(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM playlists").fetchone()[0])

    def _update_playlist_name_sync(
        self, playlist_id: str, name: str, modified_at: datetime
    ) -> Playlist | None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE playlists SET name = ?, modified_at = ? WHERE id = ?",
                (name, modified_at.isoformat(), playlist_id),
            )
            if not cursor.rowcount:
                return None
            row = conn.execute(
                "SELECT * FROM playlists WHERE id = ?", (playlist_id,)
            ).fetchone()
            songs = _fetch_songs(conn, playlist_id)
        return _playlist_from_row(row, songs)

    def _delete_playlist_sync(self, playlist_id: str) -> bool:
        """Delete a playlist (songs cascade) and compact remaining orders."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))
            if not cursor.rowcount:
                return False
            remaining = conn.execute(
                "SELECT id FROM playlists ORDER BY sort_order ASC"
            ).fetchall()
            conn.executemany(
                "UPDATE playlists SET sort_order = ? WHERE id = ?",
                [(index, str(row["id"])) for index, row in enumerate(remaining)],
            )
        return True

    def _apply_playlist_order_sync(self, ordered_ids: list[str]) -> bool:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            current = {
                str(row["id"]) for row in conn.execute("SELECT id FROM playlists")
            }
            if current != set(ordered_ids) or len(current) != len(ordered_ids):
                conn.rollback()
                return False
            conn.executemany(
                "UPDATE playlists SET sort_order = ? WHERE id = ?",
                [(index, item_id) for index, item_id in enumerate(ordered_ids)],
            )
        return True

    def _append_song_sync(
        self,
        playlist_id: str,
        song_id: str,
        title: str,
        source_url: str,
        added_at: datetime,
    ) -> Song | None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            touched = conn.execute(
                "UPDATE playlists SET modified_at = ? WHERE id = ?",
                (added_at.isoformat(), playlist_id),
            )
            if not touched.rowcount:
                conn.rollback()
                return None
            order = int(
                conn.execute(
                    "SELECT COUNT(*) FROM songs WHERE playlist_id = ?", (playlist_id,)
                ).fetchone()[0]
            )
            conn.execute(
                """
                INSERT INTO songs (
                    id, playlist_id, title, source_url, resolved_stream_url,
                    duration, added_at, sort_order
                )
                VALUES (?, ?, ?, ?, NULL, 0, ?, ?)
                """,
                (song_id, playlist_id, title, source_url, added_at.isoformat(), order),
            )
        return Song(
            id=song_id,
            playlist_id=playlist_id,
            title=title,
            source_url=source_url,
            added_at=added_at,
            order=order,
        )

    def _get_song_sync(self, song_id: str) -> Song | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_SONG_COLUMNS} FROM songs WHERE id = ?", (song_id,)
            ).fetchone()
        if row is None:
            return None
        return _song_from_row(row)

    def _list_songs_sync(self, playlist_id: str) -> list[Song]:
        with self._connect() as conn:
            return _fetch_songs(conn, playlist_id)

    def _count_songs_sync(self, playlist_id: str) -> int:
        with self._connect() as conn:
            return int(
                conn.execute(
                    "SELECT COUNT(*) FROM songs WHERE playlist_id = ?", (playlist_id,)
                ).fetchone()[0]
            )

    def _delete_song_sync(self, song_id: str) -> bool:
        """Delete one song and compact the owning playlist's song orders."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT playlist_id FROM songs WHERE id = ?", (song_id,)
            ).fetchone()
            if row is None:
                conn.rollback()
                return False
            playlist_id = str(row["playlist_id"])
            conn.execute("DELETE FROM songs WHERE id = ?", (song_id,))
            remaining = conn.execute(
                "SELECT id FROM songs WHERE playlist_id = ? ORDER BY sort_order ASC",
                (playlist_id,),
            ).fetchall()
            conn.executemany(
                "UPDATE songs SET sort_order = ? WHERE id = ?",
                [(index, str(item["id"])) for index, item in enumerate(remaining)],
            )
        return True

    def _apply_song_order_sync(self, playlist_id: str, ordered_ids: list[str]) -> bool:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            current = {
                str(row["id"])
                for row in conn.execute(
                    "SELECT id FROM songs WHERE playlist_id = ?", (playlist_id,)
                )
            }
            if current != set(ordered_ids) or len(current) != len(ordered_ids):
                conn.rollback()
                return False
            conn.executemany(
                "UPDATE songs SET sort_order = ? WHERE playlist_id = ? AND id = ?",
                [
                    (index, playlist_id, item_id)
                    for index, item_id in enumerate(ordered_ids)
                ],
            )
        return True

    def _update_song_stream_sync(
        self, song_id: str, stream_url: str, duration: float | None
    ) -> Song | None:
        with self._connect() as conn:
            if duration is None:
                cursor = conn.execute(
                    "UPDATE songs SET resolved_stream_url = ? WHERE id = ?",
                    (stream_url, song_id),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE songs
                    SET resolved_stream_url = ?, duration = ?
                    WHERE id = ?
                    """,
                    (stream_url, max(0.0, float(duration)), song_id),
                )
            if not cursor.rowcount:
                return None
            row = conn.execute(
                f"SELECT {_SONG_COLUMNS} FROM songs WHERE id = ?", (song_id,)
            ).fetchone()
        return _song_from_row(row)


def _fetch_songs(conn: sqlite3.Connection, playlist_id: str) -> list[Song]:
    rows = conn.execute(
        f"""
        SELECT {_SONG_COLUMNS}
        FROM songs
        WHERE playlist_id = ?
        ORDER BY sort_order ASC
        """,
        (playlist_id,),
    ).fetchall()
    return [_song_from_row(row) for row in rows]


def _song_from_row(row: sqlite3.Row) -> Song:
    return Song(
        id=str(row["id"]),
        playlist_id=str(row["playlist_id"]),
        title=str(row["title"]),
        source_url=str(row["source_url"]),
        resolved_stream_url=row["resolved_stream_url"],
        duration=float(row["duration"] or 0.0),
        added_at=datetime.fromisoformat(row["added_at"]),
        order=int(row["sort_order"]),
    )


def _playlist_from_row(row: sqlite3.Row, songs: Sequence[Song]) -> Playlist:
    return Playlist(
        id=str(row["id"]),
        name=str(row["name"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        modified_at=datetime.fromisoformat(row["modified_at"]),
        order=int(row["sort_order"]),
        songs=tuple(songs),
    )


def _log_slow_db_op(op: str, *, start: float, **context: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if elapsed_ms < _PERF_WARN_MS:
        return
    logger.info(
        "CatalogStore operation exceeded perf threshold",
        extra={
            "event": "catalog_store_slow_query",
            "operation": op,
            "elapsed_ms": round(elapsed_ms, 2),
            **context,
        },
    )
