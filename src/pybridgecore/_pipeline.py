"""Request pipeline: retry, token refresh, error classification, metrics, cache.

Every REST call made by :class:`~pybridgecore.client.BridgeCoreClient`
goes through :meth:`RequestPipeline.request`:

1. Serve from the response cache when the caller opted in.
2. Attach the bearer token.
3. Send, retrying transient failures (5xx gateway codes, timeouts and
   connection errors) with a linear backoff.
4. On 401, refresh the access token once (shared by concurrent callers)
   and replay the request with the new token.
5. Classify a terminal failure into a :class:`BridgeCoreApiError`
   subclass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import ValidationError

from pybridgecore._cache import DEFAULT_CACHE_TTL, ResponseCache, build_cache_key
from pybridgecore._constants import REFRESH_ENDPOINT, RETRYABLE_STATUS_CODES, SERVER_ERROR_STATUS_CODES
from pybridgecore._metrics import RequestMetrics
from pybridgecore._redact import redact_for_log, scrub_text
from pybridgecore._transport import HttpResponse, PreparedRequest, Transport
from pybridgecore.events import EventBus, EventType
from pybridgecore.exceptions import (
    BridgeCoreApiError,
    BridgeCoreError,
    BridgeCoreForbiddenError,
    BridgeCoreNetworkError,
    BridgeCoreNotFoundError,
    BridgeCoreServerError,
    BridgeCoreTenantSuspendedError,
    BridgeCoreUnauthorizedError,
    BridgeCoreValidationError,
)
from pybridgecore.models.auth import RefreshResponse
from pybridgecore.token_store import TokenStore, get_access_token

_logger = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, type[BridgeCoreApiError]] = {
    400: BridgeCoreValidationError,
    401: BridgeCoreUnauthorizedError,
    403: BridgeCoreForbiddenError,
    404: BridgeCoreNotFoundError,
}


def _error_message(payload: Any, text: str) -> str:
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    if text.strip():
        return text.strip()[:500]
    return "Request failed"


def classify_response(method: str, path: str, response: HttpResponse) -> BridgeCoreApiError:
    """Map a non-2xx response to the matching :class:`BridgeCoreApiError` subclass."""
    payload = response.json_or_none()
    message = _error_message(payload, response.text)
    status = response.status

    error_cls: type[BridgeCoreApiError]
    if status == 403 and "suspend" in message.lower():
        error_cls = BridgeCoreTenantSuspendedError
    elif status in SERVER_ERROR_STATUS_CODES:
        error_cls = BridgeCoreServerError
    else:
        error_cls = _STATUS_ERRORS.get(status, BridgeCoreApiError)

    return error_cls(
        message,
        status_code=status,
        endpoint=path,
        method=method,
        details=payload if isinstance(payload, dict) else None,
    )


class RequestPipeline:
    """Sends requests through a :class:`Transport` with auth, retry and caching.

    Parameters
    ----------
    transport : Transport
        Performs a single HTTP exchange.
    token_store : TokenStore
        Source of the bearer token; updated by refresh.
    max_retries : int
        Retries after the first attempt.
    retry_delay : float
        Base delay in seconds; retry *n* waits ``retry_delay * n``.
    retry_enabled : bool
        ``False`` sends every request exactly once.
    cache_enabled : bool
        Allow ``use_cache=True`` calls to hit the response cache.
    cache_ttl : float
        Default cache lifetime in seconds.
    debug : bool
        Log redacted request/response bodies at DEBUG level.
    event_bus : EventBus or None
        Receives token refresh and error events.
    sleep : callable
        Awaitable sleep used between retries.
    """

    def __init__(
        self,
        transport: Transport,
        token_store: TokenStore,
        *,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        retry_enabled: bool = True,
        cache_enabled: bool = False,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        debug: bool = False,
        event_bus: EventBus | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._tokens = token_store
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_enabled = retry_enabled
        self.cache_enabled = cache_enabled
        self.debug = debug
        self._bus = event_bus
        self._sleep = sleep
        self._cache = ResponseCache(default_ttl=cache_ttl)
        self._metrics = RequestMetrics()
        self._refresh_task: asyncio.Task[str] | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
        include_auth: bool = True,
        use_cache: bool = False,
        cache_ttl: float | None = None,
    ) -> Any:
        """Send one logical request and return its decoded JSON body."""
        method = method.upper()

        cache_key: str | None = None
        if use_cache and self.cache_enabled:
            cache_key = build_cache_key(method, path, body if body is not None else params)
            cached = self._cache.get(cache_key)
            if cached is not None:
                _logger.debug("Cache hit for %s %s", method, path)
                return cached

        metric = self._metrics.record_start(path, method)
        request = PreparedRequest(
            method=method,
            path=path,
            body=body,
            params=params,
            include_auth=include_auth,
        )
        if self.debug:
            _logger.debug("Request %s %s body=%s", method, path, redact_for_log(body))

        try:
            response = await self._execute(request)
            try:
                result = response.json()
            except ValueError as exc:
                raise BridgeCoreApiError(
                    f"Invalid JSON response: {response.text[:200]}",
                    status_code=response.status,
                    endpoint=path,
                    method=method,
                ) from exc
        except BridgeCoreApiError as exc:
            self._metrics.record_end(metric, success=False, status_code=exc.status_code, error=exc.message)
            _logger.warning(
                "%s %s failed (status=%s): %s", method, path, exc.status_code, scrub_text(exc.message)
            )
            self._emit_error(exc)
            raise
        except BaseException as exc:
            self._metrics.record_end(metric, success=False, error=type(exc).__name__)
            raise

        self._metrics.record_end(metric, success=True, status_code=response.status)
        if self.debug:
            _logger.debug("Response %s %s status=%d body=%s", method, path, response.status, redact_for_log(result))

        if cache_key is not None:
            self._cache.set(cache_key, result, ttl=cache_ttl)
        return result

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, *, body: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, body=body, **kwargs)

    async def put(self, path: str, *, body: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, body=body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def refresh_access_token(self) -> str:
        """Refresh the access token, sharing one in-flight refresh between callers.

        Raises
        ------
        BridgeCoreError
            When the refresh failed; both tokens have been cleared.
        """
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh())
            self._refresh_task = task
        return await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Settings and statistics
    # ------------------------------------------------------------------

    def set_retry_enabled(self, enabled: bool) -> None:
        self.retry_enabled = enabled

    def set_max_retries(self, max_retries: int) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.max_retries = max_retries

    def set_retry_delay(self, retry_delay: float) -> None:
        self.retry_delay = retry_delay

    def set_cache_enabled(self, enabled: bool) -> None:
        self.cache_enabled = enabled
        if not enabled:
            self._cache.clear()

    def set_debug_mode(self, enabled: bool) -> None:
        self.debug = enabled

    def clear_cache(self) -> None:
        self._cache.clear()
        if self._bus is not None:
            self._bus.emit(EventType.CACHE_CLEARED, source="pipeline")

    def get_cache_stats(self) -> dict[str, Any]:
        stats = self._cache.get_stats()
        stats["enabled"] = self.cache_enabled
        return stats

    def get_metrics(self) -> dict[str, Any]:
        return self._metrics.get_summary()

    def get_endpoint_stats(self) -> dict[str, dict[str, Any]]:
        return self._metrics.get_endpoint_stats()

    def clear_metrics(self) -> None:
        self._metrics.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _with_bearer(self, request: PreparedRequest) -> tuple[PreparedRequest, str | None]:
        if not request.include_auth:
            return request, None
        token = await get_access_token(self._tokens)
        if token is None:
            return request, None
        headers = {**request.headers, "Authorization": f"Bearer {token}"}
        return request.with_headers(headers), token

    async def _execute(self, request: PreparedRequest) -> HttpResponse:
        prepared, sent_token = await self._with_bearer(request)
        response = await self._send_with_retry(prepared)

        if response.status == 401 and request.include_auth:
            response = await self._recover_unauthorized(request, sent_token, response)

        if not response.ok:
            raise classify_response(request.method, request.path, response)
        return response

    async def _recover_unauthorized(
        self,
        request: PreparedRequest,
        sent_token: str | None,
        response: HttpResponse,
    ) -> HttpResponse:
        """Refresh (or reuse an already refreshed token) and replay once."""
        current = await get_access_token(self._tokens)

        if current is not None and current != sent_token:
            _logger.debug("Access token changed since %s %s was sent; replaying", request.method, request.path)
            new_token = current
        else:
            try:
                new_token = await self.refresh_access_token()
            except BridgeCoreError as exc:
                _logger.warning("Token refresh failed, surfacing 401 for %s %s: %s", request.method, request.path, exc)
                return response

        replay = request.with_headers({**request.headers, "Authorization": f"Bearer {new_token}"})
        return await self._send_with_retry(replay)

    def _may_retry(self, attempt: int) -> bool:
        return self.retry_enabled and attempt < self.max_retries

    async def _send_with_retry(self, request: PreparedRequest) -> HttpResponse:
        attempt = request.retry_attempt
        while True:
            try:
                response = await self._transport.send(request)
            except BridgeCoreNetworkError as exc:
                if not self._may_retry(attempt):
                    raise
                reason = exc.message
            else:
                if response.status not in RETRYABLE_STATUS_CODES or not self._may_retry(attempt):
                    return response
                reason = f"HTTP {response.status}"

            attempt += 1
            request = request.with_attempt(attempt)
            delay = self.retry_delay * attempt
            _logger.info(
                "Retrying %s %s (%d/%d) in %.1fs after %s",
                request.method,
                request.path,
                attempt,
                self.max_retries,
                delay,
                reason,
            )
            await self._sleep(delay)

    async def _refresh(self) -> str:
        tokens = await self._tokens.get_tokens()
        if tokens is None or not tokens.refresh_token:
            error = BridgeCoreUnauthorizedError(
                "No refresh token available",
                status_code=401,
                endpoint=REFRESH_ENDPOINT,
                method="POST",
            )
            await self._refresh_failed(error)
            raise error

        request = PreparedRequest(
            method="POST",
            path=REFRESH_ENDPOINT,
            body={},
            headers={"Authorization": f"Bearer {tokens.refresh_token}"},
            include_auth=False,
        )
        try:
            response = await self._transport.send(request)
        except BridgeCoreNetworkError as exc:
            await self._refresh_failed(exc)
            raise

        if not response.ok:
            error = classify_response(request.method, request.path, response)
            await self._refresh_failed(error)
            raise error

        try:
            refresh = RefreshResponse.model_validate(response.json_or_none())
        except ValidationError as exc:
            error = BridgeCoreApiError(
                f"Invalid refresh response: {exc.error_count()} error(s)",
                status_code=response.status,
                endpoint=REFRESH_ENDPOINT,
                method="POST",
            )
            await self._refresh_failed(error)
            raise error from exc

        refreshed = tokens.with_access_token(
            refresh.access_token,
            expires_in=refresh.expires_in,
            refresh_token=refresh.refresh_token,
        )
        await self._tokens.save_tokens(refreshed)
        _logger.debug("Access token refreshed")
        if self._bus is not None:
            self._bus.emit(EventType.AUTH_TOKEN_REFRESHED, source="pipeline")
        return refresh.access_token

    async def _refresh_failed(self, error: BridgeCoreError) -> None:
        await self._tokens.clear_tokens()
        if self._bus is not None:
            self._bus.emit(EventType.AUTH_TOKEN_REFRESH_FAILED, {"error": str(error)}, source="pipeline")

    def _emit_error(self, error: BridgeCoreApiError) -> None:
        if self._bus is None:
            return
        if isinstance(error, BridgeCoreNetworkError):
            self._bus.emit(EventType.ERROR_NETWORK, error.to_dict(), source="pipeline")
        elif isinstance(error, BridgeCoreServerError):
            self._bus.emit(EventType.ERROR_SERVER, error.to_dict(), source="pipeline")
