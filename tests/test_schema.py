import asyncio

import pytest

from refugesync.db import open_snapshot
from refugesync.schema import (
    COLUMN_ROLES,
    KILLS,
    PLAYERS,
    RANKS,
    SCHEMES,
    SESSIONS,
    detect,
    detect_scheme,
    resolve_columns,
)

from conftest import create_db


def _all_tables(scheme):
    return [names[0] for names in scheme.tables.values()]


@pytest.mark.parametrize("scheme", SCHEMES, ids=lambda s: s.name)
def test_each_scheme_detected_from_its_own_tables(scheme):
    assert detect_scheme(_all_tables(scheme)).name == scheme.name


@pytest.mark.parametrize("scheme", SCHEMES, ids=lambda s: s.name)
def test_each_scheme_detected_from_players_table_alone(scheme):
    players = scheme.tables[PLAYERS][0]
    assert detect_scheme([players]).name == scheme.name


def test_priority_order_when_several_players_tables_exist():
    assert detect_scheme(["players", "plan_players", "plan_users"]).name == "plan_v5"
    assert detect_scheme(["players", "plan_players"]).name == "plan_legacy"


def test_no_scheme_matches():
    assert detect_scheme(["plan_servers", "plan_worlds"]) is None
    assert detect_scheme([]) is None


def test_table_names_matched_case_insensitively():
    scheme = detect_scheme(["PLAN_USERS", "Plan_Sessions"])
    assert scheme.name == "plan_v5"
    resolved = scheme.resolve(["PLAN_USERS", "Plan_Sessions"])
    assert resolved[PLAYERS] == "PLAN_USERS"
    assert resolved[SESSIONS] == "Plan_Sessions"


def test_resolve_keeps_only_present_tables():
    scheme = detect_scheme(["plan_players", "plan_sessions_summary", "luckperms_players"])
    resolved = scheme.resolve(["plan_players", "plan_sessions_summary", "luckperms_players"])
    assert resolved[SESSIONS] == "plan_sessions_summary"
    assert resolved[KILLS] is None
    assert resolved["deaths"] is None
    assert resolved[RANKS] == "luckperms_players"


def test_legacy_sessions_falls_back_to_plain_sessions_table():
    scheme = detect_scheme(["plan_players", "plan_sessions"])
    assert scheme.resolve(["plan_players", "plan_sessions"])[SESSIONS] == "plan_sessions"


def test_resolve_columns_picks_first_synonym_present():
    cols = resolve_columns(["UUID", "session_start", "session_end", "afk_time", "mob_kills"], COLUMN_ROLES[SESSIONS])
    assert cols["uuid"] == "UUID"
    assert cols["session_start"] == "session_start"
    assert cols["afk_time"] == "afk_time"
    assert cols["deaths"] is None
    assert cols["playtime"] is None

    kills = resolve_columns(["killer", "victim_uuid", "date"], COLUMN_ROLES[KILLS])
    assert kills["killer"] == "killer"
    assert kills["victim"] == "victim_uuid"


def test_detect_builds_mapping_from_database(tmp_path):
    path = create_db(
        tmp_path / "plan.db",
        """
        CREATE TABLE plan_users (id INTEGER, uuid TEXT, registered INTEGER, name TEXT);
        CREATE TABLE plan_sessions (uuid TEXT, session_start INTEGER, session_end INTEGER, afk_time INTEGER);
        CREATE TABLE luckperms_players (uuid TEXT, username TEXT, primary_group TEXT);
        """,
        {},
    )

    async def go():
        async with open_snapshot(path) as db:
            return await detect(db)

    mapping = asyncio.run(go())
    assert mapping.scheme == "plan_v5"
    assert mapping.table(PLAYERS) == "plan_users"
    assert mapping.table(KILLS) is None
    assert mapping.column(PLAYERS, "name") == "name"
    assert mapping.has(SESSIONS, "session_start", "session_end")
    assert not mapping.has(SESSIONS, "mob_kills")
    assert mapping.column(KILLS, "killer") is None
    assert mapping.column(RANKS, "rank") == "primary_group"


def test_detect_returns_none_for_unknown_database(tmp_path):
    path = create_db(tmp_path / "other.db", "CREATE TABLE something (id INTEGER);", {})

    async def go():
        async with open_snapshot(path) as db:
            return await detect(db)

    assert asyncio.run(go()) is None
