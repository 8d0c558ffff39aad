"""Client configuration for pybridgecore."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pybridgecore._constants import WS_PATH
from pybridgecore.exceptions import BridgeCoreConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class BridgeCoreConfig:
    """Client configuration.

    Values are read once when the client is built. Settings that can change
    at runtime (timeout, retry, cache) are adjusted through the client's
    setters, not by mutating this object.

    Parameters
    ----------
    base_url : str
        BridgeCore API base URL, e.g. ``"https://api.example.com"``.
        The WebSocket URL is derived from it.
    timeout : float
        Per-request timeout in seconds.
    retry_enabled : bool
        Retry transient failures (5xx gateway/server errors, timeouts,
        connection errors).
    max_retries : int
        Maximum number of retries for a single request.
    retry_delay : float
        Base retry delay in seconds. Retry *n* waits ``retry_delay * n``.
    cache_enabled : bool
        Allow calls that opt in with ``use_cache=True`` to be served
        from the in-memory response cache.
    cache_ttl : float
        Default cache entry lifetime in seconds.
    debug : bool
        Log (redacted) request and response bodies at DEBUG level.
    ws_path : str
        Path prefix of the live tracking WebSocket endpoint.
    ws_reconnect_delay : float
        Base reconnect delay in seconds. Attempt *n* waits
        ``ws_reconnect_delay * n``.
    ws_max_reconnect_attempts : int
        Reconnect attempts before the channel gives up.
    ws_heartbeat : float or None
        aiohttp WebSocket heartbeat interval, ``None`` to disable.
    location_request_timeout : float
        Default timeout for on-demand driver location requests.
    """

    base_url: str
    timeout: float = 30.0
    retry_enabled: bool = True
    max_retries: int = 3
    retry_delay: float = 2.0
    cache_enabled: bool = False
    cache_ttl: float = 300.0
    debug: bool = False
    ws_path: str = WS_PATH
    ws_reconnect_delay: float = 3.0
    ws_max_reconnect_attempts: int = 5
    ws_heartbeat: float | None = None
    location_request_timeout: float = 10.0

    def __post_init__(self) -> None:
        base_url = self.base_url.strip().rstrip("/")
        if not base_url.startswith(("http://", "https://", "ws://", "wss://")):
            raise BridgeCoreConfigError(f"base_url must be an http(s) or ws(s) URL, got {self.base_url!r}")
        object.__setattr__(self, "base_url", base_url)
        if self.timeout <= 0:
            raise BridgeCoreConfigError("timeout must be positive")
        if self.max_retries < 0:
            raise BridgeCoreConfigError("max_retries must not be negative")
        if self.retry_delay < 0 or self.ws_reconnect_delay < 0:
            raise BridgeCoreConfigError("delays must not be negative")
        if self.ws_max_reconnect_attempts < 0:
            raise BridgeCoreConfigError("ws_max_reconnect_attempts must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> BridgeCoreConfig:
        """Create configuration from ``BRIDGECORE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        config_kwargs: dict[str, Any] = {}
        base_url = env.get("BRIDGECORE_BASE_URL")
        if base_url is not None:
            config_kwargs["base_url"] = base_url

        ws_path = env.get("BRIDGECORE_WS_PATH")
        if ws_path is not None:
            config_kwargs["ws_path"] = ws_path

        _FLOAT_ENV = {
            "BRIDGECORE_TIMEOUT": "timeout",
            "BRIDGECORE_RETRY_DELAY": "retry_delay",
            "BRIDGECORE_CACHE_TTL": "cache_ttl",
            "BRIDGECORE_WS_RECONNECT_DELAY": "ws_reconnect_delay",
            "BRIDGECORE_LOCATION_REQUEST_TIMEOUT": "location_request_timeout",
        }
        for env_key, field_name in _FLOAT_ENV.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        _INT_ENV = {
            "BRIDGECORE_MAX_RETRIES": "max_retries",
            "BRIDGECORE_WS_MAX_RECONNECT_ATTEMPTS": "ws_max_reconnect_attempts",
        }
        for env_key, field_name in _INT_ENV.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        if "retry_enabled" not in overrides:
            config_kwargs["retry_enabled"] = _env_bool(env.get("BRIDGECORE_RETRY_ENABLED"), True)
        if "cache_enabled" not in overrides:
            config_kwargs["cache_enabled"] = _env_bool(env.get("BRIDGECORE_CACHE_ENABLED"), False)
        if "debug" not in overrides:
            config_kwargs["debug"] = _env_bool(env.get("BRIDGECORE_DEBUG"), False)

        config_kwargs.update(overrides)

        if "base_url" not in config_kwargs:
            raise BridgeCoreConfigError("BRIDGECORE_BASE_URL is not set")

        return cls(**config_kwargs)
