import asyncio
import json
import shutil

import pytest

from refugesync import sync
from refugesync.config import ServerConfig, SyncConfig
from refugesync.downloader import TransportError
from refugesync.fixtures import PLAYERS
from refugesync.models import LeaderboardSnapshot
from refugesync.sync import Acquired, SnapshotMissingError, run_sync
from refugesync.writer import write_snapshot

from conftest import ALICE, BOB, CAROL, NOW


def _config(tmp_path, **kw):
    base = dict(
        local_db_path=tmp_path / "temp" / "Plan.db",
        output_path=tmp_path / "public" / "data" / "leaderboards.json",
        banned_players_path=tmp_path / "banned-players.txt",
    )
    base.update(kw)
    return SyncConfig(**base)


def test_dev_mode_builds_fixture_and_writes_output(tmp_path):
    config = _config(tmp_path, dev_mode=True)
    snapshot = asyncio.run(run_sync(config))

    assert config.local_db_path.exists()
    data = json.loads(config.output_path.read_text(encoding="utf-8"))
    assert len(data["mostActive"]) == len(PLAYERS)
    assert data["topKillers"] and data["mostDeaths"]
    assert snapshot.most_active[0].rank is not None
    for rows in snapshot.boards().values():
        assert len({r.uuid for r in rows}) == len(rows)


def test_dev_mode_reuses_previous_output_when_no_database(tmp_path):
    config = _config(tmp_path, dev_mode=True)
    previous = LeaderboardSnapshot(last_updated="2024-01-01T00:00:00.000Z")
    write_snapshot(previous, config.output_path)

    snapshot = asyncio.run(run_sync(config))

    assert snapshot.last_updated == "2024-01-01T00:00:00.000Z"
    assert not config.local_db_path.exists()


def test_full_run_with_download_merges_and_excludes_banned(tmp_path, v5_db):
    config = _config(tmp_path, server=ServerConfig(host="refuge", username="u", password="p", port=21))
    config.banned_players_path.write_text(
        "# banned\n  " + CAROL.upper() + "  \nnot-a-uuid\n", encoding="utf-8"
    )

    async def fake_ftp(host, port, server, paths, dest, timeout):
        if host == "refuge":
            raise OSError("Name or service not known")
        shutil.copy(v5_db, dest)
        return paths[0]

    snapshot = asyncio.run(run_sync(config, fetchers={"ftp": fake_ftp, "sftp": fake_ftp}, now_ms=NOW))

    data = json.loads(config.output_path.read_text(encoding="utf-8"))
    for board in ("mostActive", "topKillers", "mostDeaths"):
        assert CAROL not in [r["uuid"] for r in data[board]]

    assert [r.uuid for r in snapshot.most_active] == [BOB, ALICE]
    alice = snapshot.most_active[1]
    # PvP kills are joined into every board, not only top killers.
    assert alice.kills.player == 2
    assert alice.deaths == 2
    assert alice.activity_score == pytest.approx(6.4)


def test_download_failure_propagates_and_keeps_old_output(tmp_path):
    config = _config(tmp_path, server=ServerConfig(host="refuge", username="u", password="p"))
    write_snapshot(LeaderboardSnapshot(last_updated="2024-01-01T00:00:00.000Z"), config.output_path)
    before = config.output_path.read_text(encoding="utf-8")

    async def failing(host, port, server, paths, dest, timeout):
        raise ConnectionRefusedError(host)

    with pytest.raises(TransportError):
        asyncio.run(run_sync(config, fetchers={"ftp": failing, "sftp": failing}))

    assert config.output_path.read_text(encoding="utf-8") == before


def test_acquisition_without_database_is_fatal(tmp_path, monkeypatch):
    async def nothing(config, fetchers=None):
        return Acquired(source="local")

    monkeypatch.setattr(sync, "acquire_snapshot", nothing)
    config = _config(tmp_path, dev_mode=True)

    with pytest.raises(SnapshotMissingError):
        asyncio.run(run_sync(config))
    assert not config.output_path.exists()
