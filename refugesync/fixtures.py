"""Small PLAN v5 style database for development runs.

Used when REFUGE_DEV_MODE is set and no snapshot or previous output exists,
so the whole pipeline can run without server credentials.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger("fixtures")

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

SCHEMA = """
CREATE TABLE plan_users (
  id INTEGER PRIMARY KEY,
  uuid TEXT NOT NULL UNIQUE,
  registered INTEGER NOT NULL,
  name TEXT NOT NULL,
  times_kicked INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE plan_user_info (
  id INTEGER PRIMARY KEY,
  uuid TEXT NOT NULL,
  server_uuid TEXT NOT NULL,
  registered INTEGER NOT NULL,
  opped INTEGER NOT NULL DEFAULT 0,
  banned INTEGER NOT NULL DEFAULT 0,
  join_address TEXT
);

CREATE TABLE plan_sessions (
  id INTEGER PRIMARY KEY,
  uuid TEXT NOT NULL,
  server_uuid TEXT NOT NULL,
  session_start INTEGER NOT NULL,
  session_end INTEGER NOT NULL,
  mob_kills INTEGER NOT NULL DEFAULT 0,
  deaths INTEGER NOT NULL DEFAULT 0,
  afk_time INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE plan_kills (
  id INTEGER PRIMARY KEY,
  killer_uuid TEXT NOT NULL,
  victim_uuid TEXT NOT NULL,
  server_uuid TEXT NOT NULL,
  weapon TEXT,
  date INTEGER NOT NULL
);

CREATE TABLE luckperms_players (
  uuid TEXT PRIMARY KEY,
  username TEXT NOT NULL,
  primary_group TEXT NOT NULL
);
"""

SERVER_UUID = "00000000-0000-0000-0000-000000000001"

# name, uuid, rank, days since join, sessions, hours per session, mob kills per session, deaths per session
PLAYERS: List[Tuple[str, str, str, int, int, float, int, int]] = [
    ("Kage45", "5f1a2b3c-0000-4000-8000-000000000001", "admin", 120, 40, 2.5, 12, 1),
    ("Willow", "5f1a2b3c-0000-4000-8000-000000000002", "moderator", 90, 25, 1.5, 4, 2),
    ("Brickhouse", "5f1a2b3c-0000-4000-8000-000000000003", "builder", 60, 18, 3.0, 1, 0),
    ("Nightcrawler", "5f1a2b3c-0000-4000-8000-000000000004", "default", 30, 12, 1.0, 20, 4),
    ("Sprout", "5f1a2b3c-0000-4000-8000-000000000005", "default", 5, 3, 0.5, 0, 1),
]

PVP: List[Tuple[int, int]] = [(0, 3), (0, 3), (3, 1), (1, 3), (3, 0)]


def build_fixture_database(path: Path, now_ms: Optional[int] = None) -> Path:
    """Create (or replace) a fixture database at ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.unlink()

    now_ms = int(now_ms if now_ms is not None else time.time() * 1000)
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(SCHEMA)
        for idx, (name, uuid, rank, days, sessions, hours, mobs, deaths) in enumerate(PLAYERS, start=1):
            registered = now_ms - days * DAY_MS
            conn.execute(
                "INSERT INTO plan_users (id, uuid, registered, name) VALUES (?, ?, ?, ?)",
                (idx, uuid, registered, name),
            )
            conn.execute(
                "INSERT INTO plan_user_info (uuid, server_uuid, registered) VALUES (?, ?, ?)",
                (uuid, SERVER_UUID, registered),
            )
            conn.execute(
                "INSERT INTO luckperms_players (uuid, username, primary_group) VALUES (?, ?, ?)",
                (uuid, name.lower(), rank),
            )
            # Spread sessions evenly between join date and now.
            step = max(1, (days * DAY_MS) // max(1, sessions))
            length = int(hours * HOUR_MS)
            for n in range(sessions):
                start = registered + n * step
                conn.execute(
                    "INSERT INTO plan_sessions (uuid, server_uuid, session_start, session_end, mob_kills, deaths, afk_time) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (uuid, SERVER_UUID, start, start + length, mobs, deaths if n % 2 == 0 else 0, length // 10),
                )

        for n, (killer, victim) in enumerate(PVP):
            conn.execute(
                "INSERT INTO plan_kills (killer_uuid, victim_uuid, server_uuid, weapon, date) VALUES (?, ?, ?, ?, ?)",
                (PLAYERS[killer][1], PLAYERS[victim][1], SERVER_UUID, "DIAMOND_SWORD", now_ms - (n + 1) * DAY_MS),
            )
        conn.commit()
    finally:
        conn.close()

    logger.info("Built fixture database with %s players at %s", len(PLAYERS), path)
    return path
