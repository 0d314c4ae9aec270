from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .models import FileStatus, IndexEntry


def _iso_utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    # Shared by worker threads; every access is serialized by the coordinator lock.
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS meta(
          key TEXT PRIMARY KEY,
          value TEXT
        );

        CREATE TABLE IF NOT EXISTS files(
          path TEXT PRIMARY KEY,
          status TEXT NOT NULL,
          fingerprint TEXT,
          language TEXT,
          last_error TEXT,
          updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS file_chunks(
          path TEXT NOT NULL,
          chunk_id TEXT NOT NULL,
          PRIMARY KEY(path, chunk_id),
          FOREIGN KEY(path) REFERENCES files(path) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_file_chunks_chunk_id ON file_chunks(chunk_id);
        """
    )


def drop_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        DROP TABLE IF EXISTS file_chunks;
        DROP TABLE IF EXISTS files;
        DROP TABLE IF EXISTS meta;
        """
    )


def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    return None if row is None else row["value"]


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )


def load_entries(conn: sqlite3.Connection) -> dict[str, IndexEntry]:
    chunk_ids: dict[str, set[str]] = {}
    for r in conn.execute("SELECT path, chunk_id FROM file_chunks").fetchall():
        chunk_ids.setdefault(r["path"], set()).add(r["chunk_id"])

    entries: dict[str, IndexEntry] = {}
    for r in conn.execute("SELECT * FROM files ORDER BY path").fetchall():
        entries[r["path"]] = IndexEntry(
            path=r["path"],
            status=FileStatus(r["status"]),
            fingerprint=r["fingerprint"],
            chunk_ids=frozenset(chunk_ids.get(r["path"], ())),
            language=r["language"],
            last_error=r["last_error"],
        )
    return entries


def save_entry(conn: sqlite3.Connection, entry: IndexEntry) -> None:
    conn.execute(
        """
        INSERT INTO files(path, status, fingerprint, language, last_error, updated_at)
        VALUES(?, ?, ?, ?, ?, ?)
        ON CONFLICT(path) DO UPDATE SET
          status=excluded.status,
          fingerprint=excluded.fingerprint,
          language=excluded.language,
          last_error=excluded.last_error,
          updated_at=excluded.updated_at
        """,
        (entry.path, entry.status.value, entry.fingerprint, entry.language, entry.last_error, _iso_utc_now()),
    )
    conn.execute("DELETE FROM file_chunks WHERE path = ?", (entry.path,))
    conn.executemany(
        "INSERT INTO file_chunks(path, chunk_id) VALUES(?, ?)",
        [(entry.path, cid) for cid in sorted(entry.chunk_ids)],
    )


def delete_entries(conn: sqlite3.Connection, paths: Iterable[str]) -> int:
    paths = list(paths)
    if not paths:
        return 0
    cur = conn.executemany("DELETE FROM files WHERE path = ?", [(p,) for p in paths])
    return int(cur.rowcount or 0)


def replace_all(conn: sqlite3.Connection, entries: Iterable[IndexEntry]) -> None:
    conn.execute("DELETE FROM file_chunks")
    conn.execute("DELETE FROM files")
    for entry in entries:
        save_entry(conn, entry)
