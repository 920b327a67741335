# ==========================================================
# refugesync – Snapshot Downloader
#
# IMPORTANT DESIGN:
#   - Transport is chosen from host/port (SFTP for port 22 or "sftp" hosts).
#   - FTP prefers aioftp and falls back to plain ftplib ("safe FTP").
#   - Every hostname variant x remote path is tried before giving up;
#     giving up is fatal for the run (TransportError).
# ==========================================================

import asyncio
import ftplib
import os
import re
import socket
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import aioftp
import asyncssh

from .config import ServerConfig, SyncConfig
from .logging_utils import StageLoggerAdapter

import logging
logger = logging.getLogger("downloader")

FTP_DEFAULT_PORT = 21
SFTP_DEFAULT_PORT = 22

# Where PLAN keeps its SQLite file on typical hosts, tried after the configured path.
FALLBACK_REMOTE_PATHS: Tuple[str, ...] = (
    "/plugins/Plan/database.db",
    "/plugins/Plan/Plan.db",
    "plugins/Plan/database.db",
)

# GGServers hands out panel hostnames; users paste them with schemes or doubled suffixes.
VENDOR_SUFFIX = ".ggservers.com"

# (host, port, server, remote_paths, dest, timeout) -> remote path that worked
Fetcher = Callable[[str, int, ServerConfig, Sequence[str], Path, float], Awaitable[str]]


class TransportError(RuntimeError):
    """No hostname/path/transport combination produced a snapshot."""

    def __init__(self, message: str, attempts: Optional[List[Tuple[str, str, str]]] = None):
        super().__init__(message)
        self.attempts = attempts or []


# ==========================================================
# ====================== HELPERS ===========================
# ==========================================================

def _aioftp_known_incompatible(exc: Exception) -> bool:
    # Common real-world mismatch: aioftp expects EPSV (229) but server replies PASV (227)
    s = str(exc)
    return "Waiting for ('229',) but got 227" in s or "Waiting for ('229',)" in s and "227" in s


def choose_transport(host: str, port: int) -> str:
    """
    Simple auto mode:
      - Port 22 => SFTP
      - Otherwise => FTP
    Host hints ("sftp") can override.
    """
    if "sftp" in (host or "").lower():
        return "sftp"
    if port == SFTP_DEFAULT_PORT:
        return "sftp"
    return "ftp"


def transport_order(host: str, port: int) -> List[Tuple[str, int]]:
    """SFTP first (then plain FTP) when the port suggests SFTP, else FTP only."""
    if choose_transport(host, port) == "sftp":
        return [("sftp", port), ("ftp", FTP_DEFAULT_PORT)]
    return [("ftp", port)]


def hostname_variants(host: str) -> List[str]:
    """Primary hostname first, then known vendor quirks. Order kept, duplicates dropped."""
    primary = (host or "").strip()
    stripped = re.sub(r"^[a-z]+://", "", primary, flags=re.IGNORECASE).rstrip("/")
    collapsed = stripped
    while (VENDOR_SUFFIX + VENDOR_SUFFIX) in collapsed.lower():
        idx = collapsed.lower().index(VENDOR_SUFFIX + VENDOR_SUFFIX)
        collapsed = collapsed[:idx] + collapsed[idx + len(VENDOR_SUFFIX):]

    base = collapsed
    if base.lower().endswith(VENDOR_SUFFIX):
        base = base[: -len(VENDOR_SUFFIX)]
    with_suffix = base + VENDOR_SUFFIX if base else ""
    mc_prefixed = "mc-" + re.sub(r"^mc-", "", base, flags=re.IGNORECASE) + VENDOR_SUFFIX if base else ""

    out: List[str] = []
    for candidate in (primary, stripped, collapsed, with_suffix, mc_prefixed):
        if candidate and candidate not in out:
            out.append(candidate)
    return out


def remote_path_candidates(configured: Optional[str]) -> List[str]:
    out: List[str] = []
    for path in ((configured or "").strip(), *FALLBACK_REMOTE_PATHS):
        if path and path not in out:
            out.append(path)
    return out


def _finalize(tmp_path: Path, dest: Path) -> None:
    """Move a finished download into place; empty files count as failures."""
    size = tmp_path.stat().st_size if tmp_path.exists() else 0
    if size <= 0:
        if tmp_path.exists():
            tmp_path.unlink()
        raise TransportError(f"downloaded file is empty: {dest}")
    os.replace(tmp_path, dest)


def _part_path(dest: Path) -> Path:
    return dest.with_name(dest.name + ".part")


# ==========================================================
# ===================== DOWNLOADERS ========================
# ==========================================================

async def aioftp_download(
    host: str, port: int, server: ServerConfig, remote_paths: Sequence[str], dest: Path, timeout: float
) -> str:
    tmp_path = _part_path(dest)
    last_error: Optional[Exception] = None

    ftp = aioftp.Client()
    await ftp.connect(host, port)
    try:
        await ftp.login(server.username, server.password)
        for remote in remote_paths:
            try:
                async with ftp.download_stream(remote) as stream:
                    with open(tmp_path, "wb") as f:
                        async for block in stream.iter_by_block():
                            f.write(block)
                _finalize(tmp_path, dest)
                return remote
            except (aioftp.StatusCodeError, TransportError) as e:
                last_error = e
                logger.debug("aioftp: %s not retrievable on %s (%s)", remote, host, e)
        raise TransportError(f"no remote path retrievable via aioftp on {host}: {last_error}")
    finally:
        try:
            await ftp.quit()
        except (aioftp.StatusCodeError, ConnectionError, OSError):
            ftp.close()


def ftplib_safe_download(
    host: str, port: int, server: ServerConfig, remote_paths: Sequence[str], dest: Path, timeout: float
) -> str:
    tmp_path = _part_path(dest)
    last_error: Optional[Exception] = None

    with ftplib.FTP() as ftp:
        ftp.connect(host, port, timeout=timeout)
        ftp.login(server.username, server.password)
        ftp.set_pasv(True)

        for remote in remote_paths:
            try:
                with open(tmp_path, "wb") as f:
                    ftp.retrbinary("RETR " + remote, f.write)
                _finalize(tmp_path, dest)
                return remote
            except (ftplib.error_perm, TransportError) as e:
                last_error = e
                logger.debug("safe_ftp: %s not retrievable on %s (%s)", remote, host, e)

    raise TransportError(f"no remote path retrievable via safe FTP on {host}: {last_error}")


async def asyncssh_sftp_download(
    host: str, port: int, server: ServerConfig, remote_paths: Sequence[str], dest: Path, timeout: float
) -> str:
    tmp_path = _part_path(dest)
    last_error: Optional[Exception] = None

    async with asyncssh.connect(
        host, port=port, username=server.username, password=server.password, known_hosts=None
    ) as conn:
        async with conn.start_sftp_client() as sftp:
            for remote in remote_paths:
                try:
                    await sftp.get(remote, str(tmp_path))
                    _finalize(tmp_path, dest)
                    return remote
                except (asyncssh.SFTPError, TransportError) as e:
                    last_error = e
                    logger.debug("sftp: %s not retrievable on %s (%s)", remote, host, e)

    raise TransportError(f"no remote path retrievable via SFTP on {host}: {last_error}")


async def ftp_download(
    host: str, port: int, server: ServerConfig, remote_paths: Sequence[str], dest: Path, timeout: float
) -> str:
    """FTP mode: prefer aioftp, fall back to safe FTP unless the host does not resolve."""
    lg = StageLoggerAdapter(logger, "download")
    try:
        return await asyncio.wait_for(aioftp_download(host, port, server, remote_paths, dest, timeout), timeout=timeout)
    except socket.gaierror:
        raise
    except Exception as e:
        if _aioftp_known_incompatible(e):
            lg.warning("aioftp incompatible with %s (EPSV/PASV mismatch). Falling back to safe FTP.", host)
        else:
            lg.warning("aioftp failed on %s; falling back to safe FTP (%s)", host, e)

    # ftplib is bounded by its socket timeout; a thread cannot be cancelled.
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, ftplib_safe_download, host, port, server, remote_paths, dest, timeout)


async def sftp_download(
    host: str, port: int, server: ServerConfig, remote_paths: Sequence[str], dest: Path, timeout: float
) -> str:
    return await asyncio.wait_for(asyncssh_sftp_download(host, port, server, remote_paths, dest, timeout), timeout=timeout)


DEFAULT_FETCHERS: Dict[str, Fetcher] = {
    "sftp": sftp_download,
    "ftp": ftp_download,
}


# ==========================================================
# ====================== ENTRYPOINT ========================
# ==========================================================

async def download_snapshot(config: SyncConfig, fetchers: Optional[Mapping[str, Fetcher]] = None) -> Path:
    """Fetch the PLAN database to ``config.local_db_path``.

    Raises TransportError after every hostname variant, transport and remote
    path has failed.
    """
    lg = StageLoggerAdapter(logger, "download")
    server = config.server
    if not server.configured:
        raise TransportError("server host/username not configured (set REFUGE_SERVER_HOST / REFUGE_SERVER_USERNAME)")

    fetchers = fetchers or DEFAULT_FETCHERS
    dest = Path(config.local_db_path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    hosts = hostname_variants(server.host)
    paths = remote_path_candidates(config.remote_db_path)
    order = transport_order(server.host, server.port)
    attempts: List[Tuple[str, str, str]] = []

    lg.info("Downloading PLAN database (hosts=%s, transports=%s)", len(hosts), ",".join(t for t, _ in order))
    started = time.monotonic()

    for host in hosts:
        for transport, port in order:
            fetch = fetchers[transport]
            try:
                # Each fetcher enforces transport_timeout itself.
                remote = await fetch(host, port, server, paths, dest, config.transport_timeout)
            except Exception as e:
                attempts.append((host, transport, str(e) or type(e).__name__))
                lg.warning("%s download from %s:%s failed: %s", transport, host, port, str(e) or type(e).__name__)
                continue

            dur_ms = int((time.monotonic() - started) * 1000)
            if host != server.host.strip():
                lg.info("Primary hostname failed; alternate hostname %s worked.", host)
            lg.info("Downloaded %s via %s from %s:%s (%s bytes, %sms)", remote, transport, host, port, dest.stat().st_size, dur_ms)
            return dest

    raise TransportError(f"could not download PLAN database after {len(attempts)} attempt(s)", attempts)


async def resolve_variants(host: str) -> List[Tuple[str, Optional[str]]]:
    """DNS-resolve every hostname variant: (hostname, first IPv4 or None)."""
    loop = asyncio.get_running_loop()
    results: List[Tuple[str, Optional[str]]] = []
    for candidate in hostname_variants(host):
        try:
            infos = await loop.getaddrinfo(candidate, None, family=socket.AF_INET)
            results.append((candidate, infos[0][4][0] if infos else None))
        except socket.gaierror:
            results.append((candidate, None))
    return results


# Ports GGServers panels commonly expose file access on.
ALTERNATE_PORTS: Tuple[int, ...] = (FTP_DEFAULT_PORT, SFTP_DEFAULT_PORT, 2121, 8021)


def alternate_ports(port: int) -> List[int]:
    return [p for p in ALTERNATE_PORTS if p != port]


async def port_open(host: str, port: int, timeout: float = 5.0) -> bool:
    """True if a TCP connection to host:port is accepted within ``timeout``."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug("close after port probe %s:%s failed: %s", host, port, e)
    return True
