"""Banned player list.

Plain text, one UUID per line. Notes:
  - Lines are trimmed and lowercased before validation.
  - Blank lines and lines starting with '#' are ignored.
  - Dashless 32-hex UUIDs (as printed by some tools) are accepted and re-dashed.
  - Malformed lines are logged and skipped, never fatal.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Set

logger = logging.getLogger("bans")

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_DASHLESS_RE = re.compile(r"^[0-9a-f]{32}$")


def normalize_uuid(raw: Optional[str]) -> Optional[str]:
    """Return the canonical lowercase dashed UUID, or None if ``raw`` is not one."""
    if not raw:
        return None

    value = raw.strip().lower()
    if _DASHLESS_RE.match(value):
        value = f"{value[:8]}-{value[8:12]}-{value[12:16]}-{value[16:20]}-{value[20:]}"

    if not UUID_RE.match(value):
        return None
    return value


def parse_banned_uuids(lines: Iterable[str], source: str = "<banned list>") -> Set[str]:
    banned: Set[str] = set()
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        uuid = normalize_uuid(line)
        if uuid is None:
            logger.warning("Skipping malformed UUID in %s line %s: %r", source, lineno, line)
            continue
        banned.add(uuid)
    return banned


def load_banned_uuids(path: Path) -> Set[str]:
    """Read the banned list from ``path``. A missing file means nobody is banned."""
    if not path.exists():
        logger.info("No banned players file at %s; no players excluded.", path)
        return set()

    with open(path, "r", encoding="utf-8-sig") as f:
        banned = parse_banned_uuids(f, source=str(path))

    logger.info("Loaded %s banned player UUID(s) from %s", len(banned), path)
    return banned
