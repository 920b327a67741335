import sqlite3
from pathlib import Path
from typing import Dict, Iterable, Sequence

import pytest

from refugesync.logging_utils import reset_warnings

NOW = 1_700_000_000_000
HOUR = 60 * 60 * 1000
DAY = 24 * HOUR

ALICE = "aaaaaaaa-0000-4000-8000-000000000001"
BOB = "aaaaaaaa-0000-4000-8000-000000000002"
CAROL = "aaaaaaaa-0000-4000-8000-000000000003"
DAVE = "aaaaaaaa-0000-4000-8000-000000000004"


def create_db(path: Path, schema: str, rows: Dict[str, Iterable[Sequence]]) -> Path:
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(schema)
        for table, values in rows.items():
            for row in values:
                placeholders = ", ".join("?" for _ in row)
                conn.execute(f"INSERT INTO {table} VALUES ({placeholders})", tuple(row))
        conn.commit()
    finally:
        conn.close()
    return path


V5_SCHEMA = """
CREATE TABLE plan_users (id INTEGER PRIMARY KEY, uuid TEXT, registered INTEGER, name TEXT);
CREATE TABLE plan_user_info (id INTEGER PRIMARY KEY, uuid TEXT, registered INTEGER);
CREATE TABLE plan_sessions (
  id INTEGER PRIMARY KEY, uuid TEXT, session_start INTEGER, session_end INTEGER,
  mob_kills INTEGER, deaths INTEGER, afk_time INTEGER
);
CREATE TABLE plan_kills (id INTEGER PRIMARY KEY, killer_uuid TEXT, victim_uuid TEXT, date INTEGER);
"""


def v5_rows():
    sessions = []
    sid = 0
    # Alice: two long sessions two months ago.
    for n in range(2):
        sid += 1
        start = NOW - 60 * DAY + n * HOUR * 12
        sessions.append((sid, ALICE, start, start + 10 * HOUR, 5, 1, 0))
    # Bob: three short sessions on the last three days.
    for n in range(1, 4):
        sid += 1
        start = NOW - n * DAY
        sessions.append((sid, BOB, start, start + 2 * HOUR, 1, 0, 0))
    # Carol: the most of everything, but banned.
    sid += 1
    sessions.append((sid, CAROL, NOW - DAY, NOW - DAY + 100 * HOUR, 100, 50, 0))

    kills = [
        (1, ALICE, BOB, NOW - DAY),
        (2, ALICE, BOB, NOW - DAY),
        (3, BOB, ALICE, NOW - DAY),
        (4, ALICE, ALICE, NOW - DAY),
    ] + [(10 + n, CAROL, ALICE, NOW - DAY) for n in range(5)]

    return {
        "plan_users": [
            (1, ALICE, NOW - 100 * DAY, "Alice"),
            (2, BOB, NOW - 50 * DAY, "Bob"),
            (3, CAROL.upper(), NOW - 10 * DAY, "Carol"),
            (4, DAVE, NOW - 5 * DAY, "Dave"),
        ],
        "plan_user_info": [],
        "plan_sessions": sessions,
        "plan_kills": kills,
    }


@pytest.fixture(autouse=True)
def _reset_warn_once():
    reset_warnings()
    yield


@pytest.fixture
def v5_db(tmp_path):
    return create_db(tmp_path / "Plan.db", V5_SCHEMA, v5_rows())
