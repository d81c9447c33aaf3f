from __future__ import annotations

import os

import pytest

from vlessgate.core.config import RelayConfig, clear_settings
from vlessgate.core.destination import Destination

from helpers import IDENTITY


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    for name in list(os.environ):
        if name.upper().startswith("VLESSGATE_") or name.upper() in ("UUID", "PROXY"):
            monkeypatch.delenv(name)
    clear_settings()
    yield
    clear_settings()


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(identity=IDENTITY, connect_timeout=5.0)


@pytest.fixture
def fallback_config() -> RelayConfig:
    return RelayConfig(
        identity=IDENTITY,
        fallback=Destination("proxy.example", 8443),
        connect_timeout=5.0,
    )
