"""Last recorded snapshot per watched folder, kept in a local sqlite file."""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from driveflow.models import FileKind, FileRecord, Snapshot


SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshot_entries (
    scope TEXT NOT NULL,
    file_id TEXT NOT NULL,
    name TEXT NOT NULL,
    kind TEXT NOT NULL,
    modified_time TEXT NOT NULL,
    parent_id TEXT,
    mime_type TEXT,
    size INTEGER,
    PRIMARY KEY (scope, file_id)
);
CREATE TABLE IF NOT EXISTS state_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_COLUMNS = ("file_id", "name", "kind", "modified_time", "parent_id", "mime_type", "size")


@asynccontextmanager
async def _connect(db_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(SCHEMA)
        yield db


def _row_to_record(row: aiosqlite.Row) -> FileRecord:
    return FileRecord(
        id=row["file_id"],
        name=row["name"],
        kind=FileKind(row["kind"]),
        last_modified=row["modified_time"],
        parent_id=row["parent_id"],
        mime_type=row["mime_type"],
        size=row["size"],
    )


async def load_snapshot(db_path: Path, scope: str) -> Snapshot:
    async with _connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM snapshot_entries WHERE scope = ? ORDER BY file_id",
            (scope,),
        ) as cursor:
            records = [_row_to_record(row) async for row in cursor]
    return {record.id: record for record in records}


async def save_snapshot(db_path: Path, scope: str, snapshot: Snapshot) -> None:
    """Replace the stored snapshot for `scope` wholesale."""
    rows = [
        (scope, r.id, r.name, r.kind.value, r.last_modified, r.parent_id, r.mime_type, r.size)
        for r in snapshot.values()
    ]
    async with _connect(db_path) as db:
        await db.execute("DELETE FROM snapshot_entries WHERE scope = ?", (scope,))
        await db.executemany(
            f"INSERT INTO snapshot_entries (scope, {', '.join(_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )
        await db.commit()


async def get_meta(db_path: Path, key: str) -> str | None:
    async with _connect(db_path) as db:
        async with db.execute("SELECT value FROM state_meta WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
    return None if row is None else row[0]


async def set_meta(db_path: Path, key: str, value: str) -> None:
    async with _connect(db_path) as db:
        await db.execute(
            "INSERT INTO state_meta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        await db.commit()
