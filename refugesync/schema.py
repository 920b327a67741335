"""Schema detection for PLAN snapshots.

PLAN has renamed its tables and columns several times across releases, and the
snapshot we receive is whatever version the game host happens to run. Detection
works in two passes:

1. Table schemes. ``SCHEMES`` is an ordered list of known naming conventions.
   The first scheme whose players table exists wins; its other tables are kept
   only if present.
2. Column roles. For every resolved table, each logical field is mapped to the
   first known synonym that exists, or None.

Nothing here raises on a missing table or column. Missing pieces are logged and
the extractor skips whatever depends on them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import aiosqlite

from .db import list_tables, table_columns
from .logging_utils import warn_once

logger = logging.getLogger("schema")

# Logical table names
PLAYERS = "players"
USER_INFO = "user_info"
SESSIONS = "sessions"
KILLS = "kills"
DEATHS = "deaths"
RANKS = "ranks"

# LuckPerms keeps primary groups in its own table, independent of PLAN's version.
RANK_TABLE_CANDIDATES: Tuple[str, ...] = ("luckperms_players",)


@dataclass(frozen=True)
class TableScheme:
    """One known table naming convention."""

    name: str
    tables: Mapping[str, Tuple[str, ...]]

    @staticmethod
    def _index(present: Iterable[str]) -> Dict[str, str]:
        # SQLite table names are case-insensitive; keep the real spelling.
        return {t.lower(): t for t in present}

    def _find(self, logical: str, index: Mapping[str, str]) -> Optional[str]:
        for candidate in self.tables.get(logical, ()):
            real = index.get(candidate.lower())
            if real:
                return real
        return None

    def is_present(self, present: Iterable[str]) -> bool:
        return self._find(PLAYERS, self._index(present)) is not None

    def resolve(self, present: Iterable[str]) -> Dict[str, Optional[str]]:
        index = self._index(present)
        resolved: Dict[str, Optional[str]] = {logical: self._find(logical, index) for logical in self.tables}
        resolved[RANKS] = None
        for candidate in RANK_TABLE_CANDIDATES:
            if candidate in index:
                resolved[RANKS] = index[candidate]
                break
        return resolved


SCHEMES: Tuple[TableScheme, ...] = (
    TableScheme(
        name="plan_v5",
        tables={
            PLAYERS: ("plan_users",),
            USER_INFO: ("plan_user_info",),
            SESSIONS: ("plan_sessions",),
            KILLS: ("plan_kills",),
            DEATHS: ("plan_deaths",),
        },
    ),
    TableScheme(
        name="plan_legacy",
        tables={
            PLAYERS: ("plan_players",),
            USER_INFO: ("plan_user_info",),
            SESSIONS: ("plan_sessions_summary", "plan_sessions"),
            KILLS: ("plan_kills",),
            DEATHS: ("plan_deaths",),
        },
    ),
    TableScheme(
        name="unprefixed",
        tables={
            PLAYERS: ("players", "users"),
            USER_INFO: ("user_info",),
            SESSIONS: ("sessions", "sessions_summary"),
            KILLS: ("kills",),
            DEATHS: ("deaths",),
        },
    ),
)


# ----------------------------------------------------------
# Column roles: logical field -> known synonyms, in preference order
# ----------------------------------------------------------

COLUMN_ROLES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    PLAYERS: {
        "id": ("id",),
        "uuid": ("uuid", "player_uuid", "user_uuid"),
        "name": ("name", "player_name", "username", "user_name"),
        "registered": ("registered", "join_date", "first_seen", "registered_at"),
    },
    USER_INFO: {
        "uuid": ("uuid", "user_uuid", "player_uuid"),
        "user_id": ("user_id",),
        "registered": ("registered", "join_date"),
    },
    SESSIONS: {
        "uuid": ("uuid", "player_uuid", "user_uuid"),
        "user_id": ("user_id",),
        # Summary tables carry pre-aggregated totals.
        "playtime": ("playtime", "play_time", "total_playtime"),
        "session_count": ("session_count", "sessions", "sessions_count"),
        "last_seen": ("last_seen", "lastseen", "last_played"),
        # Granular tables carry one row per session.
        "session_start": ("session_start", "start", "started_at"),
        "session_end": ("session_end", "end", "ended_at"),
        "afk_time": ("afk_time", "afk", "afk_ms"),
        "mob_kills": ("mob_kills", "mobkills"),
        "player_kills": ("player_kills", "pvp_kills"),
        "deaths": ("deaths", "death_count"),
    },
    KILLS: {
        # Event tables: one row per PvP kill.
        "killer": ("killer_uuid", "killer"),
        "victim": ("victim_uuid", "victim"),
        "date": ("date", "killed_at", "time"),
        # Summary tables: one row per player.
        "uuid": ("uuid", "player_uuid"),
        "mob_kills": ("mob_kills",),
        "player_kills": ("player_kills",),
    },
    DEATHS: {
        "uuid": ("uuid", "victim_uuid", "player_uuid"),
        "deaths": ("deaths", "death_count"),
    },
    RANKS: {
        "uuid": ("uuid",),
        "rank": ("primary_group", "group", "rank"),
    },
}


def resolve_columns(columns: Sequence[str], roles: Mapping[str, Tuple[str, ...]]) -> Dict[str, Optional[str]]:
    """Map every role to the first synonym present in ``columns`` (case-insensitive)."""
    index = {c.lower(): c for c in columns}
    resolved: Dict[str, Optional[str]] = {}
    for role, synonyms in roles.items():
        resolved[role] = next((index[s.lower()] for s in synonyms if s.lower() in index), None)
    return resolved


@dataclass
class SchemaMapping:
    scheme: str
    tables: Dict[str, Optional[str]] = field(default_factory=dict)
    columns: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)

    def table(self, logical: str) -> Optional[str]:
        return self.tables.get(logical)

    def column(self, logical: str, role: str) -> Optional[str]:
        if not self.table(logical):
            return None
        return self.columns.get(logical, {}).get(role)

    def has(self, logical: str, *roles: str) -> bool:
        """True when the table exists and every named role resolved."""
        if not self.table(logical):
            return False
        return all(self.column(logical, r) for r in roles)

    def describe(self) -> List[str]:
        lines = [f"scheme: {self.scheme}"]
        for logical, real in self.tables.items():
            if not real:
                lines.append(f"  {logical}: -")
                continue
            cols = ", ".join(f"{role}={col}" for role, col in self.columns.get(logical, {}).items() if col)
            lines.append(f"  {logical}: {real} ({cols or 'no known columns'})")
        return lines


def detect_scheme(present: Iterable[str]) -> Optional[TableScheme]:
    present = list(present)
    for scheme in SCHEMES:
        if scheme.is_present(present):
            return scheme
    return None


async def detect(db: aiosqlite.Connection) -> Optional[SchemaMapping]:
    """Inspect the snapshot and build a mapping, or None if no scheme matches."""
    present = await list_tables(db)
    scheme = detect_scheme(present)
    if scheme is None:
        logger.warning(
            "No known PLAN table scheme found (tables: %s). Leaderboards will be empty.",
            ", ".join(present) or "none",
        )
        return None

    mapping = SchemaMapping(scheme=scheme.name, tables=scheme.resolve(present))
    logger.info("Detected table scheme %s", scheme.name)

    for logical, real in mapping.tables.items():
        if not real:
            logger.info("Table for %s not present in scheme %s", logical, scheme.name)
            continue
        columns = await table_columns(db, real)
        resolved = resolve_columns(columns, COLUMN_ROLES.get(logical, {}))
        mapping.columns[logical] = resolved
        missing = [role for role, col in resolved.items() if col is None]
        if missing:
            logger.debug("%s (%s): unresolved columns %s", logical, real, ", ".join(missing))

    if not mapping.column(PLAYERS, "uuid"):
        warn_once(logger, "players_uuid", "Players table %s has no uuid column; nothing can be extracted.", mapping.table(PLAYERS))

    return mapping
