"""The sync pipeline: acquire -> detect -> extract -> merge -> write."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .bans import load_banned_uuids
from .config import SyncConfig
from .db import open_snapshot
from .downloader import Fetcher, download_snapshot
from .extractor import extract
from .fixtures import build_fixture_database
from .logging_utils import StageLoggerAdapter
from .merger import merge_leaderboards
from .models import LeaderboardSnapshot
from .schema import detect
from .writer import read_snapshot, write_snapshot

logger = logging.getLogger("sync")


class SnapshotMissingError(RuntimeError):
    """Development mode could not produce a database to read."""


@dataclass
class Acquired:
    """What the acquisition step produced: a database path, or a reusable output."""

    db_path: Optional[Path] = None
    reused: Optional[LeaderboardSnapshot] = None
    source: str = "download"


async def acquire_snapshot(config: SyncConfig, fetchers: Optional[Mapping[str, Fetcher]] = None) -> Acquired:
    lg = StageLoggerAdapter(logger, "acquire")
    local = Path(config.local_db_path)

    if not config.dev_mode:
        return Acquired(db_path=await download_snapshot(config, fetchers), source="download")

    lg.info("Development mode: skipping download.")
    if local.exists():
        lg.info("Using existing local database %s", local)
        return Acquired(db_path=local, source="local")

    previous = read_snapshot(config.output_path)
    if previous is not None:
        lg.info("No local database; keeping previous output %s (last updated %s)", config.output_path, previous.last_updated)
        return Acquired(reused=previous, source="previous_output")

    try:
        return Acquired(db_path=build_fixture_database(local), source="fixture")
    except OSError as e:
        raise SnapshotMissingError(f"could not build fixture database at {local}: {e}") from e


async def build_snapshot(db_path: Path, config: SyncConfig, now_ms: Optional[int] = None) -> LeaderboardSnapshot:
    """Detect, extract and merge from a local database file."""
    if not Path(db_path).exists():
        raise SnapshotMissingError(f"database not found: {db_path}")

    banned = load_banned_uuids(config.banned_players_path)
    async with open_snapshot(db_path) as db:
        mapping = await detect(db)
        if mapping is not None:
            for line in mapping.describe():
                logger.debug(line)
        snapshot = await extract(db, mapping, config, banned, now_ms=now_ms)
    return merge_leaderboards(snapshot)


async def run_sync(
    config: SyncConfig,
    fetchers: Optional[Mapping[str, Fetcher]] = None,
    now_ms: Optional[int] = None,
) -> LeaderboardSnapshot:
    """One full sync run. TransportError / SnapshotMissingError propagate (fatal)."""
    lg = StageLoggerAdapter(logger, "sync")
    started = time.monotonic()
    lg.info("Starting PLAN data sync (dev_mode=%s)", config.dev_mode)

    acquired = await acquire_snapshot(config, fetchers)
    if acquired.reused is not None:
        return acquired.reused

    if acquired.db_path is None:
        raise SnapshotMissingError(f"acquisition ({acquired.source}) produced no database")
    snapshot = await build_snapshot(acquired.db_path, config, now_ms=now_ms)
    write_snapshot(snapshot, config.output_path)

    dur_ms = int((time.monotonic() - started) * 1000)
    lg.info(
        "Sync complete (source=%s) | mostActive=%s topKillers=%s mostDeaths=%s | %sms",
        acquired.source,
        len(snapshot.most_active),
        len(snapshot.top_killers),
        len(snapshot.most_deaths),
        dur_ms,
    )
    return snapshot
