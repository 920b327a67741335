"""Leaderboard data model and its JSON shape.

The website reads camelCase keys, so ``to_dict``/``from_dict`` translate between
the Python attributes and the published file layout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# Values below this are epoch seconds; read as milliseconds they would predate 1974.
_SECONDS_CUTOFF = 100_000_000_000


def iso_from_epoch_ms(value: Any) -> Optional[str]:
    """PLAN stores timestamps as epoch milliseconds. Return ISO-8601 (UTC) or None."""
    if value is None or value == "":
        return None
    try:
        ms = int(float(value))
    except (TypeError, ValueError):
        return None
    if ms <= 0:
        return None
    if ms < _SECONDS_CUTOFF:
        ms *= 1000
    dt = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _non_negative(value: Any) -> int:
    try:
        n = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return max(0, n)


@dataclass
class KillCounts:
    mob: int = 0
    player: int = 0

    @property
    def total(self) -> int:
        return self.mob + self.player


@dataclass
class PlayerRecord:
    uuid: str
    name: str
    playtime: int = 0
    sessions: int = 0
    kills: KillCounts = field(default_factory=KillCounts)
    deaths: int = 0
    afk_time: int = 0
    last_seen: Optional[str] = None
    join_date: Optional[str] = None
    rank: Optional[str] = None
    activity_score: Optional[float] = None

    def __post_init__(self) -> None:
        self.uuid = (self.uuid or "").strip().lower()
        self.playtime = _non_negative(self.playtime)
        self.sessions = _non_negative(self.sessions)
        self.deaths = _non_negative(self.deaths)
        self.afk_time = _non_negative(self.afk_time)
        self.kills = KillCounts(mob=_non_negative(self.kills.mob), player=_non_negative(self.kills.player))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "uuid": self.uuid,
            "name": self.name,
            "playtime": self.playtime,
            "sessions": self.sessions,
            "kills": {"mob": self.kills.mob, "player": self.kills.player},
            "deaths": self.deaths,
            "afkTime": self.afk_time,
            "lastSeen": self.last_seen,
            "joinDate": self.join_date,
        }
        if self.rank is not None:
            out["rank"] = self.rank
        if self.activity_score is not None:
            out["activityScore"] = self.activity_score
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerRecord":
        kills = data.get("kills") or {}
        return cls(
            uuid=data.get("uuid", ""),
            name=data.get("name", ""),
            playtime=data.get("playtime", 0),
            sessions=data.get("sessions", 0),
            kills=KillCounts(mob=kills.get("mob", 0), player=kills.get("player", 0)),
            deaths=data.get("deaths", 0),
            afk_time=data.get("afkTime", 0),
            last_seen=data.get("lastSeen"),
            join_date=data.get("joinDate"),
            rank=data.get("rank"),
            activity_score=data.get("activityScore"),
        )


LEADERBOARDS = ("mostActive", "topKillers", "mostDeaths")


@dataclass
class LeaderboardSnapshot:
    most_active: List[PlayerRecord] = field(default_factory=list)
    top_killers: List[PlayerRecord] = field(default_factory=list)
    most_deaths: List[PlayerRecord] = field(default_factory=list)
    last_updated: str = field(default_factory=utc_now_iso)

    def boards(self) -> Dict[str, List[PlayerRecord]]:
        return {
            "mostActive": self.most_active,
            "topKillers": self.top_killers,
            "mostDeaths": self.most_deaths,
        }

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {name: [r.to_dict() for r in rows] for name, rows in self.boards().items()}
        out["lastUpdated"] = self.last_updated
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardSnapshot":
        def rows(key: str) -> List[PlayerRecord]:
            return [PlayerRecord.from_dict(r) for r in (data.get(key) or []) if isinstance(r, dict)]

        return cls(
            most_active=rows("mostActive"),
            top_killers=rows("topKillers"),
            most_deaths=rows("mostDeaths"),
            last_updated=data.get("lastUpdated") or utc_now_iso(),
        )
