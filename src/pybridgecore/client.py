"""High-level async client for the BridgeCore API."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

import aiohttp
from pydantic import ValidationError

from pybridgecore._constants import LOGIN_ENDPOINT, LOGOUT_ENDPOINT, ME_ENDPOINT
from pybridgecore._pipeline import RequestPipeline
from pybridgecore._transport import HttpTransport
from pybridgecore.config import BridgeCoreConfig
from pybridgecore.events import EventBus, EventType
from pybridgecore.exceptions import BridgeCoreApiError, BridgeCoreError
from pybridgecore.live_tracking import LiveTrackingClient
from pybridgecore.models.auth import LoginRequest, TenantSession, UserInfo
from pybridgecore.session import SessionTokens
from pybridgecore.token_store import InMemoryTokenStore, TokenStore

_logger = logging.getLogger(__name__)

#: Lifetime of the cached ``/me`` response in seconds.
ME_CACHE_TTL: float = 300.0


class BridgeCoreClient:
    """Async client for the BridgeCore API.

    Usage::

        async with BridgeCoreClient(config) as client:
            await client.login("driver@example.com", "secret")
            me = await client.me()
            await client.live_tracking.connect(me.user.odoo_user_id)
    """

    def __init__(
        self,
        config: BridgeCoreConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        token_store: TokenStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._tokens: TokenStore = token_store if token_store is not None else InMemoryTokenStore()
        self._bus = event_bus if event_bus is not None else EventBus()
        self._transport: HttpTransport | None = None
        self._pipeline: RequestPipeline | None = None
        self._live_tracking: LiveTrackingClient | None = None
        self._me_cache: tuple[UserInfo, float] | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BridgeCoreClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = HttpTransport(
            self._config.base_url,
            self._http_session,
            timeout=self._config.timeout,
        )
        self._pipeline = RequestPipeline(
            self._transport,
            self._tokens,
            max_retries=self._config.max_retries,
            retry_delay=self._config.retry_delay,
            retry_enabled=self._config.retry_enabled,
            cache_enabled=self._config.cache_enabled,
            cache_ttl=self._config.cache_ttl,
            debug=self._config.debug,
            event_bus=self._bus,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._live_tracking is not None:
            await self._live_tracking.dispose()
            self._live_tracking = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._pipeline = None
        self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_pipeline(self) -> RequestPipeline:
        if self._pipeline is None:
            raise BridgeCoreError("Client not initialized. Use 'async with BridgeCoreClient(...) as client:'")
        return self._pipeline

    def _require_transport(self) -> HttpTransport:
        if self._transport is None:
            raise BridgeCoreError("Client not initialized. Use 'async with BridgeCoreClient(...) as client:'")
        return self._transport

    @property
    def config(self) -> BridgeCoreConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def token_store(self) -> TokenStore:
        return self._tokens

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        *,
        odoo_fields_check: dict[str, Any] | None = None,
    ) -> TenantSession:
        """Authenticate and store the token pair.

        Raises
        ------
        BridgeCoreApiError
            If the backend rejected the credentials or answered with an
            unexpected body.
        """
        pipeline = self._require_pipeline()
        body = LoginRequest(email=email, password=password, odoo_fields_check=odoo_fields_check).to_payload()
        try:
            response = await pipeline.post(LOGIN_ENDPOINT, body=body, include_auth=False)
            try:
                tenant_session = TenantSession.model_validate(response)
            except ValidationError as exc:
                raise BridgeCoreApiError(
                    "Invalid login response",
                    endpoint=LOGIN_ENDPOINT,
                    method="POST",
                ) from exc
        except BridgeCoreError as exc:
            self._bus.emit(EventType.AUTH_LOGIN_FAILED, {"email": email, "error": str(exc)}, source="client")
            raise

        await self._tokens.save_tokens(
            SessionTokens.from_response(
                access_token=tenant_session.access_token,
                refresh_token=tenant_session.refresh_token,
                expires_in=tenant_session.expires_in,
            )
        )
        pipeline.clear_cache()
        self._me_cache = None
        _logger.info("Logged in as %s (tenant %s)", tenant_session.user.email, tenant_session.tenant.slug)
        self._bus.emit(
            EventType.AUTH_LOGIN,
            {"user_id": tenant_session.user.id, "email": tenant_session.user.email, "tenant_id": tenant_session.tenant.id},
            source="client",
        )
        return tenant_session

    async def logout(self) -> None:
        """End the session. Local state is cleared even if the backend call fails."""
        pipeline = self._require_pipeline()
        try:
            await pipeline.post(LOGOUT_ENDPOINT, body={})
        except BridgeCoreError as exc:
            _logger.warning("Remote logout failed, clearing local session anyway: %s", exc)
        finally:
            await self._tokens.clear_tokens()
            self._me_cache = None
            pipeline.clear_cache()
            self._bus.emit(EventType.AUTH_LOGOUT, source="client")

    async def refresh_token(self) -> str:
        """Force an access token refresh; returns the new access token."""
        return await self._require_pipeline().refresh_access_token()

    async def me(
        self,
        *,
        odoo_fields_check: dict[str, Any] | None = None,
        force_refresh: bool = False,
    ) -> UserInfo:
        """Current user and tenant, cached for :data:`ME_CACHE_TTL` seconds.

        Passing *odoo_fields_check* (``{"model": ..., "list_fields": [...]}``)
        asks the backend for extra Odoo fields in ``odoo_fields_data``; such
        calls always hit the network and are not cached.
        """
        if odoo_fields_check is None and not force_refresh and self._me_cache is not None:
            info, expires_at = self._me_cache
            if time.monotonic() < expires_at:
                return info

        body: dict[str, Any] = {}
        if odoo_fields_check is not None:
            body["odoo_fields_check"] = odoo_fields_check
        response = await self._require_pipeline().post(ME_ENDPOINT, body=body)
        try:
            info = UserInfo.model_validate(response)
        except ValidationError as exc:
            raise BridgeCoreApiError("Invalid /me response", endpoint=ME_ENDPOINT, method="POST") from exc
        if odoo_fields_check is None:
            self._me_cache = (info, time.monotonic() + ME_CACHE_TTL)
        return info

    async def is_logged_in(self) -> bool:
        tokens = await self._tokens.get_tokens()
        return tokens is not None and tokens.has_valid_session

    async def get_token_info(self) -> dict[str, Any]:
        tokens = await self._tokens.get_tokens()
        if tokens is None:
            return {"has_tokens": False}
        return tokens.describe()

    # ------------------------------------------------------------------
    # Live tracking
    # ------------------------------------------------------------------

    @property
    def live_tracking(self) -> LiveTrackingClient:
        """The live tracking channel, sharing this client's HTTP session and event bus."""
        if self._live_tracking is None:
            if self._http_session is None:
                raise BridgeCoreError("Client not initialized. Use 'async with BridgeCoreClient(...) as client:'")
            self._live_tracking = LiveTrackingClient(
                self._config.base_url,
                self._bus,
                session=self._http_session,
                ws_path=self._config.ws_path,
                reconnect_delay=self._config.ws_reconnect_delay,
                max_reconnect_attempts=self._config.ws_max_reconnect_attempts,
                heartbeat=self._config.ws_heartbeat,
                location_request_timeout=self._config.location_request_timeout,
            )
        return self._live_tracking

    # ------------------------------------------------------------------
    # Generic requests
    # ------------------------------------------------------------------

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send an authenticated request; see :meth:`RequestPipeline.request`."""
        return await self._require_pipeline().request(method, path, **kwargs)

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self._require_pipeline().get(path, params=params, **kwargs)

    async def post(self, path: str, *, body: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self._require_pipeline().post(path, body=body, **kwargs)

    async def put(self, path: str, *, body: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self._require_pipeline().put(path, body=body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self._require_pipeline().delete(path, **kwargs)

    # ------------------------------------------------------------------
    # Runtime settings and statistics
    # ------------------------------------------------------------------

    def set_timeout(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        self._require_transport().timeout = seconds

    def set_custom_header(self, name: str, value: str | None) -> None:
        self._require_transport().set_custom_header(name, value)

    def set_retry_enabled(self, enabled: bool) -> None:
        self._require_pipeline().set_retry_enabled(enabled)

    def set_max_retries(self, max_retries: int) -> None:
        self._require_pipeline().set_max_retries(max_retries)

    def set_cache_enabled(self, enabled: bool) -> None:
        self._require_pipeline().set_cache_enabled(enabled)

    def set_debug_mode(self, enabled: bool) -> None:
        """Log redacted request and response bodies at DEBUG level."""
        self._require_pipeline().set_debug_mode(enabled)

    def clear_cache(self) -> None:
        self._me_cache = None
        self._require_pipeline().clear_cache()

    def get_cache_stats(self) -> dict[str, Any]:
        return self._require_pipeline().get_cache_stats()

    def get_metrics(self) -> dict[str, Any]:
        return self._require_pipeline().get_metrics()

    def get_endpoint_stats(self) -> dict[str, dict[str, Any]]:
        return self._require_pipeline().get_endpoint_stats()
