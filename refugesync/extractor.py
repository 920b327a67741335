# ==========================================================
# refugesync – Leaderboard Extraction
#
# IMPORTANT DESIGN:
#   - SQL is assembled only from identifiers found by schema detection.
#   - Banned UUIDs are bound parameters on every query (never filtered later).
#   - Each leaderboard query is independent: one failing query empties
#     that leaderboard and nothing else.
# ==========================================================

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import aiosqlite

from .config import ActivityWeights, SyncConfig
from .db import fetch_all, quote_ident as q
from .logging_utils import warn_once
from .models import KillCounts, LeaderboardSnapshot, PlayerRecord, iso_from_epoch_ms
from .schema import DEATHS, KILLS, PLAYERS, RANKS, SESSIONS, USER_INFO, SchemaMapping

logger = logging.getLogger("extractor")

DAY_MS = 24 * 60 * 60 * 1000

# Most-active strategies
STRATEGY_SUMMARY = "summary"
STRATEGY_SESSIONS = "sessions"
STRATEGY_PLAYERS_ONLY = "players_only"


@dataclass
class QueryOutcome:
    """Result of one leaderboard query: records, or the error that emptied it."""

    name: str
    records: List[PlayerRecord] = field(default_factory=list)
    error: Optional[BaseException] = None
    strategy: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _num(value: float) -> str:
    """Render a configured numeric constant as an SQL literal."""
    return repr(float(value))


# ==========================================================
# ==================== QUERY BUILDING ======================
# ==========================================================

class QueryBuilder:
    """Builds the leaderboard SQL for one detected schema."""

    def __init__(self, mapping: SchemaMapping, weights: ActivityWeights, banned: Iterable[str], now_ms: int):
        self.m = mapping
        self.weights = weights
        self.banned = sorted({b.lower() for b in banned})
        self.now_ms = int(now_ms)
        self.cutoff_ms = self.now_ms - int(weights.window_days) * DAY_MS

    # ----------------------------------------------------------
    # players (deduplicated, ban filter applied here)
    # ----------------------------------------------------------

    def players_subquery(self) -> Tuple[str, List[Any]]:
        t = q(self.m.table(PLAYERS) or "")
        uuid = self.m.column(PLAYERS, "uuid")
        name = self.m.column(PLAYERS, "name")
        reg = self.m.column(PLAYERS, "registered")
        pid = self.m.column(PLAYERS, "id")

        uuid_expr = f"LOWER(TRIM({q(uuid)}))" if uuid else "NULL"
        sql = (
            f"SELECT {uuid_expr} AS uuid, "
            f"MAX({q(name) if name else 'NULL'}) AS name, "
            f"MIN({q(reg) if reg else 'NULL'}) AS registered, "
            f"MIN({q(pid) if pid else 'NULL'}) AS id "
            f"FROM {t} WHERE {q(uuid) if uuid else 'NULL'} IS NOT NULL"
        )
        params: List[Any] = []
        if self.banned:
            placeholders = ", ".join("?" for _ in self.banned)
            sql += f" AND {uuid_expr} NOT IN ({placeholders})"
            params.extend(self.banned)
        sql += f" GROUP BY {uuid_expr}"
        return sql, params

    def _player_ref(self, logical: str, uuid_role: str = "uuid") -> Optional[Tuple[str, str]]:
        """(expression in ``logical``, matching column of p) linking rows to a player."""
        col = self.m.column(logical, uuid_role)
        if col:
            return f"LOWER(TRIM({q(col)}))", "p.uuid"
        user_id = self.m.column(logical, "user_id")
        if user_id and self.m.column(PLAYERS, "id"):
            return q(user_id), "p.id"
        return None

    # ----------------------------------------------------------
    # sessions aggregate
    # ----------------------------------------------------------

    def sessions_mode(self) -> Optional[str]:
        if not self.m.table(SESSIONS) or not self._player_ref(SESSIONS):
            return None
        if self.m.column(SESSIONS, "playtime"):
            return STRATEGY_SUMMARY
        if self.m.has(SESSIONS, "session_start", "session_end"):
            return STRATEGY_SESSIONS
        return "partial"

    def sessions_subquery(self) -> Optional[Tuple[str, str]]:
        """Per-player session aggregate. Returns (sql, players join column)."""
        ref = self._player_ref(SESSIONS)
        mode = self.sessions_mode()
        if ref is None or mode is None:
            return None

        col = lambda role: self.m.column(SESSIONS, role)  # noqa: E731
        start, end, afk = col("session_start"), col("session_end"), col("afk_time")
        afk_expr = f"COALESCE({q(afk)}, 0)" if afk else "0"
        length = f"MAX(COALESCE({q(end)}, 0) - COALESCE({q(start)}, 0), 0)" if start and end else None
        active = f"MAX(COALESCE({q(end)}, 0) - COALESCE({q(start)}, 0) - {afk_expr}, 0)" if start and end else None

        if mode == STRATEGY_SUMMARY:
            playtime = f"SUM(COALESCE({q(col('playtime'))}, 0))"
            active_total = f"MAX({playtime} - SUM({afk_expr}), 0)"
        elif length:
            playtime = f"SUM({length})"
            active_total = f"SUM({active})"
        else:
            playtime = "0"
            active_total = "0"

        if col("session_count"):
            sessions = f"SUM(COALESCE({q(col('session_count'))}, 0))"
        elif start and end:
            sessions = "COUNT(*)"
        else:
            sessions = "0"

        if col("last_seen"):
            last_seen = f"MAX({q(col('last_seen'))})"
        elif end:
            last_seen = f"MAX({q(end)})"
        else:
            last_seen = "NULL"

        if start and end:
            cutoff = str(self.cutoff_ms)
            recent_active = f"SUM(CASE WHEN {q(start)} >= {cutoff} THEN {active} ELSE 0 END)"
            recent_days = (
                f"COUNT(DISTINCT CASE WHEN {q(start)} >= {cutoff} AND {active} > 0 "
                f"THEN CAST({q(start)} / {DAY_MS} AS INTEGER) END)"
            )
            first_seen = f"MIN({q(start)})"
        else:
            recent_active = recent_days = "0"
            first_seen = "NULL"

        mob = f"SUM(COALESCE({q(col('mob_kills'))}, 0))" if col("mob_kills") else "0"
        pvp = f"SUM(COALESCE({q(col('player_kills'))}, 0))" if col("player_kills") else "0"
        deaths = f"SUM(COALESCE({q(col('deaths'))}, 0))" if col("deaths") else "0"

        sql = (
            f"SELECT {ref[0]} AS ref, "
            f"{sessions} AS sessions, {playtime} AS playtime, SUM({afk_expr}) AS afk_time, "
            f"{active_total} AS active_time, {recent_active} AS recent_active, {recent_days} AS recent_days, "
            f"{last_seen} AS last_seen, {first_seen} AS first_seen, "
            f"{mob} AS mob_kills, {pvp} AS player_kills, {deaths} AS deaths "
            f"FROM {q(self.m.table(SESSIONS) or '')} GROUP BY ref"
        )
        return sql, ref[1]

    # ----------------------------------------------------------
    # kills
    # ----------------------------------------------------------

    def mob_kills_source(self) -> Optional[str]:
        if self.sessions_mode() and self.m.column(SESSIONS, "mob_kills"):
            return SESSIONS
        if self.m.has(KILLS, "uuid", "mob_kills"):
            return KILLS
        return None

    def pvp_kills_source(self) -> Optional[str]:
        if self.m.has(KILLS, "killer"):
            return "kill_events"
        if self.m.has(KILLS, "uuid", "player_kills"):
            return KILLS
        if self.sessions_mode() and self.m.column(SESSIONS, "player_kills"):
            return SESSIONS
        return None

    def kills_summary_subquery(self) -> Optional[str]:
        if not self.m.has(KILLS, "uuid"):
            return None
        col = lambda role: self.m.column(KILLS, role)  # noqa: E731
        mob = f"SUM(COALESCE({q(col('mob_kills'))}, 0))" if col("mob_kills") else "0"
        pvp = f"SUM(COALESCE({q(col('player_kills'))}, 0))" if col("player_kills") else "0"
        return (
            f"SELECT LOWER(TRIM({q(col('uuid'))})) AS ref, {mob} AS mob_kills, {pvp} AS player_kills "
            f"FROM {q(self.m.table(KILLS) or '')} GROUP BY ref"
        )

    def kill_events_subquery(self) -> Optional[str]:
        killer = self.m.column(KILLS, "killer")
        if not killer:
            return None
        victim = self.m.column(KILLS, "victim")
        # Suicides are recorded as kills by some versions.
        not_self = f" AND LOWER({q(killer)}) <> LOWER(COALESCE({q(victim)}, ''))" if victim else ""
        return (
            f"SELECT LOWER(TRIM({q(killer)})) AS ref, COUNT(*) AS player_kills "
            f"FROM {q(self.m.table(KILLS) or '')} WHERE {q(killer)} IS NOT NULL{not_self} GROUP BY ref"
        )

    # ----------------------------------------------------------
    # deaths
    # ----------------------------------------------------------

    def deaths_source(self) -> Optional[str]:
        if self.m.has(DEATHS, "uuid"):
            return DEATHS
        if self.sessions_mode() and self.m.column(SESSIONS, "deaths"):
            return SESSIONS
        return None

    def deaths_subquery(self) -> Optional[str]:
        uuid = self.m.column(DEATHS, "uuid")
        if not uuid:
            return None
        deaths_col = self.m.column(DEATHS, "deaths")
        amount = f"SUM(COALESCE({q(deaths_col)}, 0))" if deaths_col else "COUNT(*)"
        return (
            f"SELECT LOWER(TRIM({q(uuid)})) AS ref, {amount} AS deaths "
            f"FROM {q(self.m.table(DEATHS) or '')} GROUP BY ref"
        )

    # ----------------------------------------------------------
    # enrichment: rank + registration date
    # ----------------------------------------------------------

    def ranks_subquery(self) -> Optional[str]:
        if not self.m.has(RANKS, "uuid", "rank"):
            return None
        uuid, rank = self.m.column(RANKS, "uuid"), self.m.column(RANKS, "rank")
        return (
            f"SELECT LOWER(TRIM({q(uuid or '')})) AS ref, MAX({q(rank or '')}) AS rank "
            f"FROM {q(self.m.table(RANKS) or '')} GROUP BY ref"
        )

    def user_info_subquery(self) -> Optional[Tuple[str, str]]:
        if self.m.column(PLAYERS, "registered") or not self.m.column(USER_INFO, "registered"):
            return None
        ref = self._player_ref(USER_INFO)
        if ref is None:
            return None
        reg = self.m.column(USER_INFO, "registered")
        return (
            f"SELECT {ref[0]} AS ref, MIN({q(reg or '')}) AS registered "
            f"FROM {q(self.m.table(USER_INFO) or '')} GROUP BY ref",
            ref[1],
        )

    # ----------------------------------------------------------
    # assembly
    # ----------------------------------------------------------

    def build(
        self,
        *,
        score: bool = False,
        where: Sequence[str] = (),
        order_by: str,
        limit: int,
    ) -> Tuple[str, List[Any]]:
        """Assemble one leaderboard query.

        Every board joins the same parts onto the deduplicated players
        subquery ``p``: each stat field has exactly one source, picked by
        ``mob_kills_source``, ``pvp_kills_source`` and ``deaths_source``, so a
        player carries identical values on every list. ``where`` and
        ``order_by`` may reference the computed fields as ``{playtime}``,
        ``{total_kills}``, ``{deaths}`` and so on; several joined subqueries
        share column names, so bare names would be ambiguous.
        """
        p_sql, params = self.players_subquery()
        joins: List[str] = []

        mob_source = self.mob_kills_source()
        pvp_source = self.pvp_kills_source()
        deaths_source = self.deaths_source()

        s = self.sessions_subquery()
        if s:
            joins.append(f"LEFT JOIN ({s[0]}) s ON s.ref = {s[1]}")
        ks = self.kills_summary_subquery() if KILLS in (mob_source, pvp_source) else None
        if ks:
            joins.append(f"LEFT JOIN ({ks}) ks ON ks.ref = p.uuid")
        ke = self.kill_events_subquery() if pvp_source == "kill_events" else None
        if ke:
            joins.append(f"LEFT JOIN ({ke}) ke ON ke.ref = p.uuid")
        d = self.deaths_subquery() if deaths_source == DEATHS else None
        if d:
            joins.append(f"LEFT JOIN ({d}) d ON d.ref = p.uuid")
        r = self.ranks_subquery()
        if r:
            joins.append(f"LEFT JOIN ({r}) r ON r.ref = p.uuid")
        ui = self.user_info_subquery()
        if ui:
            joins.append(f"LEFT JOIN ({ui[0]}) ui ON ui.ref = {ui[1]}")

        def sfield(name: str) -> str:
            return f"COALESCE(s.{name}, 0)" if s else "0"

        if s and mob_source == SESSIONS:
            mob = "COALESCE(s.mob_kills, 0)"
        elif ks and mob_source == KILLS:
            mob = "COALESCE(ks.mob_kills, 0)"
        else:
            mob = "0"

        if ke:
            pvp = "COALESCE(ke.player_kills, 0)"
        elif ks and pvp_source == KILLS:
            pvp = "COALESCE(ks.player_kills, 0)"
        elif s and pvp_source == SESSIONS:
            pvp = "COALESCE(s.player_kills, 0)"
        else:
            pvp = "0"

        if d:
            deaths_expr = "COALESCE(d.deaths, 0)"
        elif s and deaths_source == SESSIONS:
            deaths_expr = "COALESCE(s.deaths, 0)"
        else:
            deaths_expr = "0"

        join_date_parts = ["p.registered"]
        if ui:
            join_date_parts.append("ui.registered")
        if s:
            join_date_parts.append("s.first_seen")

        exprs = {
            "playtime": sfield("playtime"),
            "sessions": sfield("sessions"),
            "afk_time": sfield("afk_time"),
            "mob_kills": mob,
            "player_kills": pvp,
            "total_kills": f"({mob} + {pvp})",
            "deaths": deaths_expr,
            "last_seen": "s.last_seen" if s else "NULL",
            # COALESCE needs at least two arguments in SQLite.
            "join_date": f"COALESCE({', '.join(join_date_parts)})" if len(join_date_parts) > 1 else join_date_parts[0],
            "rank": "r.rank" if r else "NULL",
            "activity_score": self.activity_score_expr() if (s and score) else "NULL",
        }

        select = ["p.uuid AS uuid", "COALESCE(p.name, p.uuid) AS name"]
        select += [f"{expr} AS {alias}" for alias, expr in exprs.items()]

        sql = f"SELECT {', '.join(select)} FROM ({p_sql}) p"
        if joins:
            sql += " " + " ".join(joins)
        if where:
            sql += " WHERE " + " AND ".join(f"({w.format(**exprs)})" for w in where)
        sql += f" ORDER BY {order_by.format(**exprs)}, {exprs['join_date']} DESC LIMIT ?"
        params.append(int(limit))
        return sql, params

    # ----------------------------------------------------------
    # leaderboards
    # ----------------------------------------------------------

    def activity_score_expr(self) -> str:
        w = self.weights
        return (
            f"({_num(w.recent)} * COALESCE(s.recent_active, 0) / {_num(w.recent_unit_ms)}"
            f" + {_num(w.lifetime)} * COALESCE(s.active_time, 0) / {_num(w.lifetime_unit_ms)}"
            f" + {_num(w.frequency)} * COALESCE(s.sessions, 0) * {_num(w.session_bonus)}"
            f" + {_num(w.consistency)} * COALESCE(s.recent_days, 0) * {_num(w.day_bonus)})"
        )

    def most_active_strategy(self) -> str:
        mode = self.sessions_mode()
        if mode == STRATEGY_SUMMARY:
            return STRATEGY_SUMMARY
        if mode == STRATEGY_SESSIONS:
            return STRATEGY_SESSIONS
        return STRATEGY_PLAYERS_ONLY

    def most_active(self, limit: int) -> Tuple[str, List[Any], str]:
        strategy = self.most_active_strategy()
        if strategy == STRATEGY_SESSIONS:
            sql, params = self.build(
                score=True,
                where=["{playtime} > 0"],
                order_by="{activity_score} DESC, {playtime} DESC",
                limit=limit,
            )
        elif strategy == STRATEGY_SUMMARY:
            sql, params = self.build(
                where=["{playtime} > 0"],
                order_by="{playtime} DESC",
                limit=limit,
            )
        else:
            sql, params = self.build(order_by="{join_date} DESC", limit=limit)
        return sql, params, strategy

    def top_killers(self, limit: int) -> Optional[Tuple[str, List[Any]]]:
        if not self.mob_kills_source() and not self.pvp_kills_source():
            return None
        return self.build(
            where=["{total_kills} > 0"],
            order_by="{total_kills} DESC",
            limit=limit,
        )

    def most_deaths(self, limit: int) -> Optional[Tuple[str, List[Any]]]:
        if not self.deaths_source():
            return None
        return self.build(
            where=["{deaths} > 0"],
            order_by="{deaths} DESC",
            limit=limit,
        )


# ==========================================================
# ===================== ROW MAPPING ========================
# ==========================================================

def row_to_record(row: Dict[str, Any]) -> PlayerRecord:
    score = row.get("activity_score")
    return PlayerRecord(
        uuid=row.get("uuid") or "",
        name=row.get("name") or row.get("uuid") or "",
        playtime=row.get("playtime") or 0,
        sessions=row.get("sessions") or 0,
        kills=KillCounts(mob=row.get("mob_kills") or 0, player=row.get("player_kills") or 0),
        deaths=row.get("deaths") or 0,
        afk_time=row.get("afk_time") or 0,
        last_seen=iso_from_epoch_ms(row.get("last_seen")),
        join_date=iso_from_epoch_ms(row.get("join_date")),
        rank=row.get("rank"),
        activity_score=round(float(score), 4) if score is not None else None,
    )


def rank_records(records: Iterable[PlayerRecord], key: Callable[[PlayerRecord], float], limit: int) -> List[PlayerRecord]:
    """Order by ``key`` desc (ties: most recent joinDate), drop duplicate uuids, slice."""
    seen: Set[str] = set()
    unique: List[PlayerRecord] = []
    for r in records:
        if not r.uuid or r.uuid in seen:
            continue
        seen.add(r.uuid)
        unique.append(r)

    unique.sort(key=lambda r: (key(r), r.join_date or ""), reverse=True)
    return unique[: max(0, int(limit))]


def most_active_key(record: PlayerRecord) -> float:
    if record.activity_score is not None:
        return record.activity_score
    return float(record.playtime)


def top_killers_key(record: PlayerRecord) -> float:
    return float(record.kills.total)


def most_deaths_key(record: PlayerRecord) -> float:
    return float(record.deaths)


# ==========================================================
# ====================== EXECUTION =========================
# ==========================================================

async def _run_board(
    db: aiosqlite.Connection,
    name: str,
    built: Optional[Tuple[str, List[Any]]],
    key: Callable[[PlayerRecord], float],
    limit: int,
    strategy: Optional[str] = None,
) -> QueryOutcome:
    if built is None:
        warn_once(logger, f"no_source:{name}", "%s: no usable data source in this snapshot; leaderboard left empty.", name)
        return QueryOutcome(name=name, strategy=strategy)

    sql, params = built
    started = time.monotonic()
    try:
        rows = await fetch_all(db, sql, params)
    except sqlite3.Error as e:
        logger.exception("%s query failed; leaderboard left empty.", name)
        logger.debug("%s SQL: %s", name, sql)
        return QueryOutcome(name=name, error=e, strategy=strategy)

    records = rank_records((row_to_record(r) for r in rows), key, limit)
    logger.debug("%s: %s rows (%sms, strategy=%s)", name, len(records), int((time.monotonic() - started) * 1000), strategy)
    return QueryOutcome(name=name, records=records, strategy=strategy)


async def extract(
    db: aiosqlite.Connection,
    mapping: Optional[SchemaMapping],
    config: SyncConfig,
    banned: Iterable[str],
    now_ms: Optional[int] = None,
) -> LeaderboardSnapshot:
    """Run the three leaderboard queries concurrently and collect a snapshot."""
    snapshot = LeaderboardSnapshot()
    if mapping is None or not mapping.column(PLAYERS, "uuid"):
        return snapshot

    if now_ms is None:
        now_ms = int(time.time() * 1000)

    builder = QueryBuilder(mapping, config.weights, banned, now_ms)
    limits = config.limits

    active_sql, active_params, strategy = builder.most_active(limits.most_active)
    logger.info("Most active strategy: %s", strategy)

    outcomes = await asyncio.gather(
        _run_board(db, "mostActive", (active_sql, active_params), most_active_key, limits.most_active, strategy),
        _run_board(db, "topKillers", builder.top_killers(limits.top_killers), top_killers_key, limits.top_killers),
        _run_board(db, "mostDeaths", builder.most_deaths(limits.most_deaths), most_deaths_key, limits.most_deaths),
    )
    by_name = {o.name: o for o in outcomes}

    snapshot.most_active = by_name["mostActive"].records
    snapshot.top_killers = by_name["topKillers"].records
    snapshot.most_deaths = by_name["mostDeaths"].records

    failed = [o.name for o in outcomes if not o.ok]
    if failed:
        logger.warning("Leaderboards emptied by query errors: %s", ", ".join(failed))
    return snapshot


async def lookup_players(db: aiosqlite.Connection, mapping: SchemaMapping, name: str) -> List[Tuple[str, str]]:
    """Find (uuid, name) pairs whose name matches ``name`` case-insensitively."""
    uuid_col = mapping.column(PLAYERS, "uuid")
    name_col = mapping.column(PLAYERS, "name")
    if not uuid_col or not name_col:
        return []
    sql = (
        f"SELECT DISTINCT LOWER({q(uuid_col)}) AS uuid, {q(name_col)} AS name "
        f"FROM {q(mapping.table(PLAYERS) or '')} WHERE LOWER({q(name_col)}) = LOWER(?) ORDER BY name"
    )
    rows = await fetch_all(db, sql, (name.strip(),))
    return [(r["uuid"], r["name"]) for r in rows]
