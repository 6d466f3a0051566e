"""Shared fixtures: every test gets its own HOME and XDG directories."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(home / ".local" / "share"))
    for var in ("DUSTBIN_CONFIG", "DUSTBIN_DB_PATH", "DUSTBIN_LOG_LEVEL", "DUSTBIN_LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture(autouse=True)
def reset_dustbin_logger():
    yield
    logger = logging.getLogger("dustbin")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class FakeClock:
    """Injectable ``int(time.time())`` replacement."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(tmp_path: Path, clock: FakeClock):
    from dustbin.core.store.ledger import Ledger

    led = Ledger(tmp_path / "ledger.db", clock=clock)
    led.connect()
    yield led
    led.close()
