from pathlib import Path

from refugesync import run
from refugesync.config import SyncConfig
from refugesync.run import build_parser, main


def test_defaults_from_empty_environment():
    config = SyncConfig.from_env({})
    assert config.server.port == 21
    assert not config.server.configured
    assert config.dev_mode is False
    assert config.limits.most_active == 10
    assert config.weights.window_days == 14
    assert config.output_path == Path("./public/data/leaderboards.json")


def test_environment_overrides():
    config = SyncConfig.from_env(
        {
            "GGSERVERS_HOST": "refuge.ggservers.com",
            "GGSERVERS_USERNAME": "user",
            "GGSERVERS_PASSWORD": "pw",
            "REFUGE_SERVER_PORT": "22",
            "REFUGE_DEV_MODE": "true",
            "REFUGE_LIMIT_TOP_KILLERS": "25",
            "REFUGE_LIMIT_MOST_DEATHS": "not a number",
            "REFUGE_OUTPUT_PATH": "   ",
        }
    )
    assert config.server.host == "refuge.ggservers.com"
    assert config.server.port == 22
    assert config.server.configured
    assert config.dev_mode is True
    assert config.limits.top_killers == 25
    assert config.limits.most_deaths == 10
    assert config.output_path == Path("./public/data/leaderboards.json")


def test_parser_subcommands():
    parser = build_parser()
    assert parser.parse_args([]).command is None
    assert parser.parse_args(["lookup", "Kage45"]).name == "Kage45"
    assert parser.parse_args(["--dev", "sync"]).dev is True


def test_main_exits_non_zero_when_download_impossible(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("REFUGE_SERVER_HOST", "GGSERVERS_HOST", "REFUGE_SERVER_USERNAME", "GGSERVERS_USERNAME", "REFUGE_DEV_MODE", "DEV_MODE"):
        monkeypatch.delenv(name, raising=False)

    assert main(["--output", str(tmp_path / "out.json")]) == 1
    assert not (tmp_path / "out.json").exists()


def test_main_inspect_reports_missing_database(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["--database", str(tmp_path / "missing.db"), "inspect"]) == 1
    assert "not found" in capsys.readouterr().out


def test_check_host_probes_configured_then_alternate_ports(monkeypatch, capsys):
    probed = []

    async def fake_resolve(host):
        return [(host, None), ("refuge.ggservers.com", "10.0.0.5")]

    async def fake_port_open(host, port, timeout=5.0):
        probed.append((host, port))
        return port == 2121

    monkeypatch.setattr(run, "resolve_variants", fake_resolve)
    monkeypatch.setattr(run, "port_open", fake_port_open)

    assert main(["check-host", "refuge", "--port", "21"]) == 1
    out = capsys.readouterr().out
    assert "OPEN   refuge.ggservers.com:2121" in out
    assert probed == [("refuge.ggservers.com", p) for p in (21, 22, 2121, 8021)]

    probed.clear()
    assert main(["check-host", "refuge", "--port", "2121"]) == 0
    assert probed == [("refuge.ggservers.com", 2121)]
