"""Read/write the published leaderboards JSON."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .models import LeaderboardSnapshot

logger = logging.getLogger("writer")


def dumps_snapshot(snapshot: LeaderboardSnapshot) -> str:
    return json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False) + "\n"


def write_snapshot(snapshot: LeaderboardSnapshot, path: Path) -> None:
    """Replace ``path`` with the snapshot. The old file is never left half-written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=".leaderboards-", suffix=".json.tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dumps_snapshot(snapshot))
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info("Leaderboard data saved to %s", path)


def read_snapshot(path: Path) -> Optional[LeaderboardSnapshot]:
    path = Path(path)
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return LeaderboardSnapshot.from_dict(data)
