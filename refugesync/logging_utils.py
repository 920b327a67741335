"""refugesync.logging_utils

Centralised logging configuration for the sync job.

Design goals:
- Single, uniform console format across download + detection + extraction
- UTC timestamps (CI runners and the game host live in different timezones)
- Optional pipeline stage context without forcing every callsite to supply it
"""

from __future__ import annotations

import logging
import time
from typing import Optional


class _DefaultFieldsFilter(logging.Filter):
    """Ensure optional fields exist so formatters never KeyError."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "stage"):
            record.stage = "-"
        return True


def setup_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Args:
        level: Logging level name (e.g. 'INFO', 'DEBUG'), usually
               SyncConfig.log_level. Unknown or omitted names mean 'INFO'.
    """
    level_name = (level or "INFO").upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_refugesync_configured", False):
        # Idempotent: safe if called multiple times.
        root.setLevel(numeric_level)
        return

    root.setLevel(numeric_level)

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-5s | %(name)s | %(stage)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Force UTC timestamps.
    formatter.converter = time.gmtime
    handler.setFormatter(formatter)
    handler.addFilter(_DefaultFieldsFilter())

    root.addHandler(handler)
    root._refugesync_configured = True  # type: ignore[attr-defined]

    # Reduce third-party noise. We keep warnings/errors, but suppress INFO spam.
    logging.getLogger("asyncssh").setLevel(logging.WARNING)
    logging.getLogger("aioftp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class StageLoggerAdapter(logging.LoggerAdapter):
    """Inject a consistent 'stage' field so the formatter stays uniform."""

    def __init__(self, logger: logging.Logger, stage: str):
        super().__init__(logger, {"stage": stage})

    @classmethod
    def for_stage(cls, logger_name: str, stage: str) -> "StageLoggerAdapter":
        return cls(logging.getLogger(logger_name), stage)


_warned: set[str] = set()


def warn_once(logger: logging.Logger | logging.LoggerAdapter, key: str, message: str, *args) -> None:
    """Emit a WARNING at most once per process for a given key.

    Later repeats drop to DEBUG so a misconfigured schema does not flood the log.
    """
    if key in _warned:
        logger.debug(message, *args)
        return
    _warned.add(key)
    logger.warning(message, *args)


def reset_warnings() -> None:
    _warned.clear()
