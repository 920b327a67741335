"""Mojang profile lookup.

Used by ``refugesync lookup`` when a player is not in the local snapshot yet
(e.g. someone banned before they ever joined).
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import requests

from ..bans import normalize_uuid

logger = logging.getLogger("mojang")

PROFILE_URL = "https://api.mojang.com/users/profiles/minecraft/{name}"


def fetch_profile(name: str, timeout: float = 10) -> Optional[Tuple[str, str]]:
    """Return (uuid, current name) for a Minecraft username, or None if unknown."""
    name = (name or "").strip()
    if not name:
        return None

    try:
        resp = requests.get(PROFILE_URL.format(name=name), timeout=timeout)
    except requests.RequestException as e:
        logger.warning("Mojang lookup failed for %s: %s", name, e)
        return None

    if resp.status_code != 200:
        return None

    try:
        data = resp.json()
    except ValueError:
        return None

    uuid = normalize_uuid(data.get("id"))
    if not uuid:
        return None
    return uuid, data.get("name") or name
