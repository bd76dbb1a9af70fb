from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from cloudmpd.domain.entities import Album, Artist, Track
from cloudmpd.domain.errors import PersistenceFailure

logger = logging.getLogger(__name__)

# Stamped into PRAGMA user_version
SCHEMA_VERSION = 1

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tracks (
        id TEXT PRIMARY KEY,
        nid TEXT,
        title TEXT,
        album TEXT,
        artist TEXT,
        album_id TEXT,
        duration INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS albums (
        id TEXT PRIMARY KEY,
        name TEXT,
        artist TEXT,
        year TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tracks_artist ON tracks (artist)",
    "CREATE INDEX IF NOT EXISTS idx_albums_artist ON albums (artist)",
)


def _row_to_track(row: sqlite3.Row) -> Track:
    return Track(
        id=row["id"] or "",
        nid=row["nid"] or "",
        title=row["title"] or "",
        album=row["album"] or "",
        artist=row["artist"] or "",
        album_id=row["album_id"] or "",
        duration_ms=row["duration"] or 0,
    )


def _row_to_album(row: sqlite3.Row) -> Album:
    return Album(
        id=row["id"],
        name=row["name"] or "",
        artist=row["artist"] or "",
        year=row["year"] or None,
    )


class SqliteContentStore:
    """Persistent catalogue index backed by a single SQLite file.

    One connection is shared by every client thread; ``_lock`` serialises
    access to it. Rows are never expired.
    """

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._migrate()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open content store {path}: {e}")

    def _migrate(self) -> None:
        current = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if current >= SCHEMA_VERSION:
            return
        logger.info(f"Initialising content store schema v{SCHEMA_VERSION} (was v{current})")
        with self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def schema_version(self) -> int:
        with self._lock:
            return self._conn.execute("PRAGMA user_version").fetchone()[0]

    def _write(self, sql: str, params: tuple) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise PersistenceFailure(str(e))

    def _read(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(str(e))

    def upsert_track(self, track: Track) -> None:
        self._write(
            "INSERT OR REPLACE INTO tracks (id, nid, title, album, artist, album_id, duration) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (track.file_id, track.nid, track.title, track.album, track.artist,
             track.album_id, track.duration_ms),
        )

    def upsert_album(self, album: Album) -> None:
        self._write(
            "INSERT OR REPLACE INTO albums (id, name, artist, year) VALUES (?, ?, ?, ?)",
            (album.id, album.name, album.artist, album.year),
        )

    def get_track(self, track_id: str) -> Optional[Track]:
        rows = self._read("SELECT * FROM tracks WHERE id = ?", (track_id,))
        return _row_to_track(rows[0]) if rows else None

    def albums_by_artist(self, artist: str) -> List[Album]:
        rows = self._read("SELECT * FROM albums WHERE artist = ? ORDER BY name", (artist,))
        return [_row_to_album(row) for row in rows]

    def artists_matching(self, substring: str) -> List[Artist]:
        # instr() rather than LIKE, which ignores case
        rows = self._read(
            "SELECT DISTINCT artist FROM albums "
            "WHERE artist IS NOT NULL AND artist <> '' AND (? = '' OR instr(artist, ?) > 0) "
            "ORDER BY artist",
            (substring, substring),
        )
        return [Artist(name=row["artist"]) for row in rows]

    def tracks_by_artist(self, artist: str, album_substring: str = "") -> List[Track]:
        rows = self._read(
            "SELECT * FROM tracks WHERE artist = ? AND (? = '' OR instr(album, ?) > 0) "
            "ORDER BY album, rowid",
            (artist, album_substring, album_substring),
        )
        return [_row_to_track(row) for row in rows]

    def album_id_by_name(self, name: str) -> Optional[str]:
        rows = self._read(
            "SELECT album_id FROM tracks WHERE album = ? AND album_id <> '' LIMIT 1",
            (name,),
        )
        return rows[0]["album_id"] if rows else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
