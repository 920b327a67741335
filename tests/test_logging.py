import logging

from refugesync.logging_utils import setup_logging


def test_setup_logging_ignores_environment(monkeypatch):
    root = logging.getLogger()
    previous = root.level
    monkeypatch.setenv("REFUGE_LOG_LEVEL", "DEBUG")
    try:
        setup_logging(None)
        assert root.level == logging.INFO
        setup_logging("warning")
        assert root.level == logging.WARNING
        setup_logging("nonsense")
        assert root.level == logging.INFO
    finally:
        root.setLevel(previous)
