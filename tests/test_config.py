from __future__ import annotations

import pytest

from pybridgecore.config import BridgeCoreConfig
from pybridgecore.exceptions import BridgeCoreConfigError


def test_defaults_and_trailing_slash() -> None:
    config = BridgeCoreConfig(base_url=" https://api.example.com/ ")

    assert config.base_url == "https://api.example.com"
    assert config.timeout == 30.0
    assert config.max_retries == 3
    assert config.retry_delay == 2.0
    assert config.cache_enabled is False
    assert config.ws_path == "/api/v1/ws"
    assert config.ws_reconnect_delay == 3.0
    assert config.ws_max_reconnect_attempts == 5
    assert config.location_request_timeout == 10.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_url": "api.example.com"},
        {"base_url": "https://api.example.com", "timeout": 0},
        {"base_url": "https://api.example.com", "max_retries": -1},
        {"base_url": "https://api.example.com", "retry_delay": -1},
        {"base_url": "https://api.example.com", "ws_max_reconnect_attempts": -1},
    ],
)
def test_invalid_values_are_rejected(kwargs: dict) -> None:
    with pytest.raises(BridgeCoreConfigError):
        BridgeCoreConfig(**kwargs)


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRIDGECORE_BASE_URL", "https://bridge.example.com")
    monkeypatch.setenv("BRIDGECORE_TIMEOUT", "12.5")
    monkeypatch.setenv("BRIDGECORE_MAX_RETRIES", "1")
    monkeypatch.setenv("BRIDGECORE_CACHE_ENABLED", "yes")
    monkeypatch.setenv("BRIDGECORE_RETRY_ENABLED", "off")
    monkeypatch.setenv("BRIDGECORE_WS_PATH", "/live")

    config = BridgeCoreConfig.from_env(max_retries=4)

    assert config.base_url == "https://bridge.example.com"
    assert config.timeout == 12.5
    assert config.max_retries == 4
    assert config.cache_enabled is True
    assert config.retry_enabled is False
    assert config.ws_path == "/live"


def test_from_env_requires_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BRIDGECORE_BASE_URL", raising=False)

    with pytest.raises(BridgeCoreConfigError, match="BRIDGECORE_BASE_URL"):
        BridgeCoreConfig.from_env()
