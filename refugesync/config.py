"""refugesync.config

Runtime configuration for the leaderboard sync job.

The configuration is read from the environment (and an optional ``.env`` file)
exactly once, in ``SyncConfig.from_env()``, and then handed to every component.
Nothing else in the package looks at ``os.environ``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


def _get_env(env: Mapping[str, str], *names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-blank value among ``names``."""
    for name in names:
        value = env.get(name)
        if value is not None and value.strip() != "":
            return value.strip()
    return default


def _get_int(env: Mapping[str, str], *names: str, default: int) -> int:
    raw = _get_env(env, *names)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(env: Mapping[str, str], *names: str, default: bool = False) -> bool:
    raw = _get_env(env, *names)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ActivityWeights:
    """Weights for the most-active score.

    The score always blends four factors: recent active time, lifetime active
    time, session frequency and the number of distinct active days inside the
    recency window. Only the constants are tunable.
    """

    recent: float = 0.4
    lifetime: float = 0.3
    frequency: float = 0.2
    consistency: float = 0.1
    window_days: int = 14
    # Playtime is scored per unit of active time.
    recent_unit_ms: int = 30 * 60 * 1000
    lifetime_unit_ms: int = 60 * 60 * 1000
    session_bonus: float = 1.0
    day_bonus: float = 10.0


@dataclass(frozen=True)
class ServerConfig:
    host: str = ""
    username: str = ""
    password: str = ""
    port: int = 21

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username)


@dataclass(frozen=True)
class LeaderboardLimits:
    most_active: int = 10
    top_killers: int = 10
    most_deaths: int = 10


@dataclass(frozen=True)
class SyncConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    remote_db_path: str = "/plugins/Plan/database.db"
    local_db_path: Path = Path("./temp/Plan.db")
    output_path: Path = Path("./public/data/leaderboards.json")
    banned_players_path: Path = Path("./banned-players.txt")
    dev_mode: bool = False
    limits: LeaderboardLimits = field(default_factory=LeaderboardLimits)
    weights: ActivityWeights = field(default_factory=ActivityWeights)
    transport_timeout: float = 90.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> "SyncConfig":
        """Build the configuration from environment variables.

        ``REFUGE_*`` names win; the older ``GGSERVERS_*`` names used by the
        CI workflow are accepted for the server connection.
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        server = ServerConfig(
            host=_get_env(env, "REFUGE_SERVER_HOST", "GGSERVERS_HOST", default="") or "",
            username=_get_env(env, "REFUGE_SERVER_USERNAME", "GGSERVERS_USERNAME", default="") or "",
            password=_get_env(env, "REFUGE_SERVER_PASSWORD", "GGSERVERS_PASSWORD", default="") or "",
            port=_get_int(env, "REFUGE_SERVER_PORT", "GGSERVERS_PORT", default=21),
        )
        limits = LeaderboardLimits(
            most_active=_get_int(env, "REFUGE_LIMIT_MOST_ACTIVE", default=10),
            top_killers=_get_int(env, "REFUGE_LIMIT_TOP_KILLERS", default=10),
            most_deaths=_get_int(env, "REFUGE_LIMIT_MOST_DEATHS", default=10),
        )

        return cls(
            server=server,
            remote_db_path=_get_env(env, "REFUGE_REMOTE_DB_PATH", default="/plugins/Plan/database.db")
            or "/plugins/Plan/database.db",
            local_db_path=Path(_get_env(env, "REFUGE_LOCAL_DB_PATH", default="./temp/Plan.db") or "./temp/Plan.db"),
            output_path=Path(
                _get_env(env, "REFUGE_OUTPUT_PATH", default="./public/data/leaderboards.json")
                or "./public/data/leaderboards.json"
            ),
            banned_players_path=Path(
                _get_env(env, "REFUGE_BANNED_PLAYERS_PATH", default="./banned-players.txt") or "./banned-players.txt"
            ),
            dev_mode=_get_bool(env, "REFUGE_DEV_MODE", "DEV_MODE"),
            limits=limits,
            transport_timeout=float(_get_int(env, "REFUGE_TRANSPORT_TIMEOUT", default=90)),
            log_level=(_get_env(env, "REFUGE_LOG_LEVEL", default="INFO") or "INFO").upper(),
        )
