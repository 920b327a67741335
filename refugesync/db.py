# ==========================================================
# refugesync – Snapshot Database Helpers
#
# Features:
#   - Read-only aiosqlite connection to the downloaded PLAN snapshot
#   - Table / column introspection (sqlite_master, PRAGMA table_info)
#   - Simple fetch helper returning plain dicts
# ==========================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Sequence

import aiosqlite


def quote_ident(name: str) -> str:
    """Quote a table/column identifier for SQLite."""
    return '"' + name.replace('"', '""') + '"'


@asynccontextmanager
async def open_snapshot(path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """
    Open the snapshot read-only.

    The snapshot is a copy of a live plugin database; we never write to it.
    """
    uri = f"{Path(path).resolve().as_uri()}?mode=ro"
    db = await aiosqlite.connect(uri, uri=True)
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


async def list_tables(db: aiosqlite.Connection) -> List[str]:
    cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    rows = await cursor.fetchall()
    await cursor.close()
    return [row[0] for row in rows]


async def table_columns(db: aiosqlite.Connection, table: str) -> List[str]:
    cursor = await db.execute(f"PRAGMA table_info({quote_ident(table)})")
    rows = await cursor.fetchall()
    await cursor.close()
    return [row[1] for row in rows]


async def fetch_all(db: aiosqlite.Connection, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    cursor = await db.execute(sql, tuple(params))
    rows = await cursor.fetchall()
    await cursor.close()
    return [dict(row) for row in rows]


async def count_rows(db: aiosqlite.Connection, table: str) -> int:
    cursor = await db.execute(f"SELECT COUNT(*) FROM {quote_ident(table)}")
    row = await cursor.fetchone()
    await cursor.close()
    return int(row[0] or 0) if row else 0
