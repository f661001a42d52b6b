"""Catalog database schema and migrations.

`PRAGMA user_version` records how many migration steps a database has seen.
`MIGRATIONS[n]` upgrades a version-`n` database to `n + 1`; steps are only ever
appended.
"""

from __future__ import annotations

import logging
import sqlite3

from streamlist.errors import format_user_error

logger = logging.getLogger(__name__)

_CATALOG_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS playlists (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        sort_order INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        modified_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS songs (
        id TEXT PRIMARY KEY,
        playlist_id TEXT NOT NULL
            REFERENCES playlists(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        source_url TEXT NOT NULL,
        resolved_stream_url TEXT,
        duration REAL NOT NULL DEFAULT 0,
        added_at TEXT NOT NULL,
        sort_order INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS playlists_by_order ON playlists(sort_order)",
    "CREATE INDEX IF NOT EXISTS songs_by_playlist_order"
    " ON songs(playlist_id, sort_order)",
)

MIGRATIONS: tuple[tuple[str, ...], ...] = (_CATALOG_TABLES,)
SCHEMA_VERSION = len(MIGRATIONS)


def create_schema(conn: sqlite3.Connection) -> None:
    """Bring the database behind `conn` up to `SCHEMA_VERSION`."""
    current = int(conn.execute("PRAGMA user_version").fetchone()[0])
    if current > SCHEMA_VERSION:
        raise RuntimeError(
            format_user_error(
                what_failed="Unsupported database schema version.",
                likely_cause=(
                    f"The catalog is at version {current}; this build "
                    f"understands up to {SCHEMA_VERSION}."
                ),
                next_step="Upgrade streamlist or point --db at another catalog.",
            )
        )
    for version in range(current, SCHEMA_VERSION):
        logger.info("Migrating catalog schema %d -> %d", version, version + 1)
        for statement in MIGRATIONS[version]:
            conn.execute(statement)
        conn.execute(f"PRAGMA user_version = {version + 1}")
