import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import SyncConfig
from .db import count_rows, list_tables, open_snapshot
from .downloader import TransportError, alternate_ports, port_open, resolve_variants
from .extractor import lookup_players
from .logging_utils import setup_logging
from .schema import detect
from .services.mojang import fetch_profile
from .sync import SnapshotMissingError, run_sync

log = logging.getLogger("boot")


async def _inspect(config: SyncConfig) -> int:
    path = Path(config.local_db_path)
    if not path.exists():
        print(f"Database file not found at: {path}")
        print("Run `refugesync sync` first to download the database.")
        return 1

    async with open_snapshot(path) as db:
        tables = await list_tables(db)
        print(f"Found {len(tables)} tables:")
        for t in tables:
            print(f"  - {t} ({await count_rows(db, t)} rows)")

        mapping = await detect(db)
        print()
        if mapping is None:
            print("No known PLAN table scheme detected.")
            return 0
        for line in mapping.describe():
            print(line)
    return 0


async def _lookup(config: SyncConfig, name: str) -> int:
    path = Path(config.local_db_path)
    matches = []
    if path.exists():
        async with open_snapshot(path) as db:
            mapping = await detect(db)
            if mapping is not None:
                matches = await lookup_players(db, mapping, name)

    if not matches:
        profile = fetch_profile(name)
        if profile:
            log.info("%s not in local database; using Mojang profile.", name)
            matches = [profile]

    if not matches:
        print(f'Player "{name}" not found.')
        return 1

    for uuid, player_name in matches:
        print(f"{player_name}: {uuid}")
    print(f"\nAdd the UUID to {config.banned_players_path} to exclude this player.")
    return 0


async def _check_host(host: str, port: int) -> int:
    resolved = []
    for candidate, address in await resolve_variants(host):
        if address:
            resolved.append(candidate)
            print(f"OK    {candidate} -> {address}")
        else:
            print(f"FAIL  {candidate}")
    if not resolved:
        return 1

    target = resolved[0]
    print()
    if await port_open(target, port):
        print(f"OPEN  {target}:{port}")
        return 0

    print(f"CLOSED {target}:{port}")
    for alt in alternate_ports(port):
        state = "OPEN  " if await port_open(target, alt) else "CLOSED"
        print(f"{state} {target}:{alt}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="refugesync", description="Sync PLAN statistics into leaderboards.json")
    parser.add_argument("--dev", action="store_true", help="skip the download (development mode)")
    parser.add_argument("--output", help="override the output JSON path")
    parser.add_argument("--database", help="override the local database path")
    parser.add_argument("--log-level", help="logging level (default: REFUGE_LOG_LEVEL or INFO)")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("sync", help="download, extract and write leaderboards (default)")
    sub.add_parser("inspect", help="show tables and the detected schema of the local database")
    p_lookup = sub.add_parser("lookup", help="find a player's UUID by name")
    p_lookup.add_argument("name")
    p_host = sub.add_parser("check-host", help="DNS-check a hostname and its variants, then probe the port")
    p_host.add_argument("host")
    p_host.add_argument("--port", type=int, help="port to probe (default: configured server port)")
    return parser


def _apply_overrides(config: SyncConfig, args: argparse.Namespace) -> SyncConfig:
    changes = {}
    if args.dev:
        changes["dev_mode"] = True
    if args.output:
        changes["output_path"] = Path(args.output)
    if args.database:
        changes["local_db_path"] = Path(args.database)
    return replace(config, **changes) if changes else config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = _apply_overrides(SyncConfig.from_env(), args)
    setup_logging(args.log_level or config.log_level)

    command = args.command or "sync"
    try:
        if command == "inspect":
            return asyncio.run(_inspect(config))
        if command == "lookup":
            return asyncio.run(_lookup(config, args.name))
        if command == "check-host":
            return asyncio.run(_check_host(args.host, args.port or config.server.port))

        asyncio.run(run_sync(config))
        return 0
    except (TransportError, SnapshotMissingError) as e:
        log.error("Sync failed: %s", e)
        return 1
    except KeyboardInterrupt:
        log.info("Exited (KeyboardInterrupt).")
        return 130


if __name__ == "__main__":
    sys.exit(main())
