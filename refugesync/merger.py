"""Merge player records across leaderboards.

Each leaderboard query only joins the sources it needs, so the same player can
show up with kill counts in one list and playtime in another. The merge builds
one superset record per uuid and writes it back into every list without
touching each list's order or length.

Rules per field:
  - cumulative counters (playtime, sessions, kills, deaths, afkTime): max
  - lastSeen: latest
  - joinDate: earliest
  - rank, name: first non-empty
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .models import KillCounts, LeaderboardSnapshot, PlayerRecord


def _latest(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if not a:
        return b
    if not b:
        return a
    return max(a, b)


def _earliest(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if not a:
        return b
    if not b:
        return a
    return min(a, b)


def merge_pair(a: PlayerRecord, b: PlayerRecord) -> PlayerRecord:
    """Combine two partial records of the same player."""
    return PlayerRecord(
        uuid=a.uuid,
        name=a.name if a.name and a.name != a.uuid else (b.name or a.name),
        playtime=max(a.playtime, b.playtime),
        sessions=max(a.sessions, b.sessions),
        kills=KillCounts(mob=max(a.kills.mob, b.kills.mob), player=max(a.kills.player, b.kills.player)),
        deaths=max(a.deaths, b.deaths),
        afk_time=max(a.afk_time, b.afk_time),
        last_seen=_latest(a.last_seen, b.last_seen),
        join_date=_earliest(a.join_date, b.join_date),
        rank=a.rank if a.rank is not None else b.rank,
    )


def merge_records(records: Iterable[PlayerRecord]) -> Dict[str, PlayerRecord]:
    """Superset record per uuid. ``activityScore`` is per-list and not merged."""
    merged: Dict[str, PlayerRecord] = {}
    for record in records:
        if not record.uuid:
            continue
        current = merged.get(record.uuid)
        merged[record.uuid] = merge_pair(current, record) if current else replace(record, activity_score=None)
    return merged


def merge_leaderboards(snapshot: LeaderboardSnapshot) -> LeaderboardSnapshot:
    boards = snapshot.boards()
    superset = merge_records(r for rows in boards.values() for r in rows)

    def rewrite(rows: List[PlayerRecord]) -> List[PlayerRecord]:
        return [replace(superset[r.uuid], activity_score=r.activity_score) for r in rows if r.uuid in superset]

    return LeaderboardSnapshot(
        most_active=rewrite(snapshot.most_active),
        top_killers=rewrite(snapshot.top_killers),
        most_deaths=rewrite(snapshot.most_deaths),
        last_updated=snapshot.last_updated,
    )
