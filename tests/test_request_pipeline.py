from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Callable
from typing import Any

import pytest

from pybridgecore._constants import REFRESH_ENDPOINT
from pybridgecore._pipeline import RequestPipeline
from pybridgecore._transport import HttpResponse, PreparedRequest
from pybridgecore.events import EventBus, EventType
from pybridgecore.exceptions import (
    BridgeCoreApiError,
    BridgeCoreForbiddenError,
    BridgeCoreNetworkError,
    BridgeCoreNotFoundError,
    BridgeCoreServerError,
    BridgeCoreTenantSuspendedError,
    BridgeCoreUnauthorizedError,
    BridgeCoreValidationError,
)
from pybridgecore.session import SessionTokens
from pybridgecore.token_store import InMemoryTokenStore


def _json(status: int, body: Any) -> HttpResponse:
    return HttpResponse(status=status, text=json.dumps(body))


class FakeTransport:
    """Replays scripted responses; a handler may also compute them per request."""

    def __init__(self, handler: Callable[[PreparedRequest], Any]) -> None:
        self._handler = handler
        self.requests: list[PreparedRequest] = []

    @classmethod
    def scripted(cls, *results: HttpResponse | Exception) -> FakeTransport:
        queue = list(results)

        def _next(_request: PreparedRequest) -> Any:
            return queue.pop(0)

        return cls(_next)

    def calls_to(self, path: str) -> list[PreparedRequest]:
        return [r for r in self.requests if r.path == path]

    async def send(self, request: PreparedRequest) -> HttpResponse:
        self.requests.append(request)
        result = self._handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _store(access: str = "access-1", refresh: str = "refresh-1") -> InMemoryTokenStore:
    return InMemoryTokenStore(SessionTokens.from_response(access_token=access, refresh_token=refresh, expires_in=3600))


def _pipeline(transport: FakeTransport, **kwargs: Any) -> tuple[RequestPipeline, SleepRecorder]:
    sleep = SleepRecorder()
    kwargs.setdefault("token_store", _store())
    token_store = kwargs.pop("token_store")
    return RequestPipeline(transport, token_store, sleep=sleep, **kwargs), sleep


def _network_error() -> BridgeCoreNetworkError:
    return BridgeCoreNetworkError("Connection error: refused", endpoint="/x", method="GET")


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_retryable_status_is_retried_with_linear_backoff() -> None:
    transport = FakeTransport.scripted(_json(503, {}), _json(503, {}), _json(200, {"ok": True}))
    pipeline, sleep = _pipeline(transport, retry_delay=2.0)

    assert await pipeline.get("/api/v1/things") == {"ok": True}
    assert len(transport.requests) == 3
    assert sleep.delays == [2.0, 4.0]
    assert [r.retry_attempt for r in transport.requests] == [0, 1, 2]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 502, 503, 504])
async def test_exhausted_retries_surface_server_error(status: int) -> None:
    transport = FakeTransport(lambda _r: _json(status, {"detail": "upstream down"}))
    pipeline, sleep = _pipeline(transport, max_retries=3, retry_delay=1.5)

    with pytest.raises(BridgeCoreServerError) as exc_info:
        await pipeline.get("/api/v1/things")

    assert len(transport.requests) == 4
    assert sleep.delays == [1.5, 3.0, 4.5]
    assert exc_info.value.status_code == status
    assert exc_info.value.message == "upstream down"


@pytest.mark.asyncio
async def test_network_errors_are_retried() -> None:
    transport = FakeTransport.scripted(_network_error(), _network_error(), _json(200, {"n": 1}))
    pipeline, sleep = _pipeline(transport, retry_delay=1.0)

    assert await pipeline.get("/x") == {"n": 1}
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_network_error_surfaces_after_retries() -> None:
    transport = FakeTransport(lambda _r: _network_error())
    pipeline, sleep = _pipeline(transport, max_retries=2)

    with pytest.raises(BridgeCoreNetworkError):
        await pipeline.get("/x")
    assert len(transport.requests) == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_retry_disabled_sends_once() -> None:
    transport = FakeTransport(lambda _r: _json(503, {}))
    pipeline, sleep = _pipeline(transport, retry_enabled=False)

    with pytest.raises(BridgeCoreServerError):
        await pipeline.get("/x")
    assert len(transport.requests) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_non_retryable_status_is_not_retried() -> None:
    transport = FakeTransport(lambda _r: _json(404, {"detail": "Record not found"}))
    pipeline, sleep = _pipeline(transport)

    with pytest.raises(BridgeCoreNotFoundError) as exc_info:
        await pipeline.post("/api/v1/records", body={"id": 3})

    assert len(transport.requests) == 1
    assert sleep.delays == []
    error = exc_info.value
    assert error.endpoint == "/api/v1/records"
    assert error.method == "POST"
    assert error.details == {"detail": "Record not found"}


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "expected", "message"),
    [
        (400, {"detail": "email is required"}, BridgeCoreValidationError, "email is required"),
        (401, {"detail": "Invalid credentials"}, BridgeCoreUnauthorizedError, "Invalid credentials"),
        (403, {"detail": "Not allowed"}, BridgeCoreForbiddenError, "Not allowed"),
        (403, {"detail": "Tenant account is Suspended"}, BridgeCoreTenantSuspendedError, "Tenant account is Suspended"),
        (404, {"message": "gone"}, BridgeCoreNotFoundError, "gone"),
        (418, {}, BridgeCoreApiError, "{}"),
    ],
)
async def test_failures_are_classified(
    status: int,
    body: dict[str, Any],
    expected: type[BridgeCoreApiError],
    message: str,
) -> None:
    transport = FakeTransport(lambda _r: _json(status, body))
    pipeline, _ = _pipeline(transport)

    with pytest.raises(BridgeCoreApiError) as exc_info:
        await pipeline.post("/api/v1/auth/tenant/login", body={}, include_auth=False)

    assert type(exc_info.value) is expected
    assert exc_info.value.status_code == status
    assert exc_info.value.message == message


@pytest.mark.asyncio
async def test_error_message_falls_back_to_text_then_default() -> None:
    transport = FakeTransport.scripted(
        HttpResponse(status=409, text="conflict happened"),
        HttpResponse(status=409, text=""),
    )
    pipeline, _ = _pipeline(transport)

    with pytest.raises(BridgeCoreApiError, match="conflict happened"):
        await pipeline.get("/x")
    with pytest.raises(BridgeCoreApiError) as exc_info:
        await pipeline.get("/x")
    assert exc_info.value.message == "Request failed"


@pytest.mark.asyncio
async def test_empty_success_body_decodes_to_empty_dict() -> None:
    transport = FakeTransport(lambda _r: HttpResponse(status=204, text=""))
    pipeline, _ = _pipeline(transport)

    assert await pipeline.delete("/api/v1/records/3") == {}


@pytest.mark.asyncio
async def test_network_and_server_errors_are_published() -> None:
    bus = EventBus()
    transport = FakeTransport.scripted(_network_error(), _json(500, {}))
    pipeline, _ = _pipeline(transport, retry_enabled=False, event_bus=bus)

    with pytest.raises(BridgeCoreNetworkError):
        await pipeline.get("/x")
    with pytest.raises(BridgeCoreServerError):
        await pipeline.get("/x")

    assert bus.get_event_count(EventType.ERROR_NETWORK) == 1
    assert bus.get_event_count(EventType.ERROR_SERVER) == 1


# ---------------------------------------------------------------------------
# Authentication and refresh
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bearer_is_attached_only_when_requested() -> None:
    transport = FakeTransport(lambda _r: _json(200, {}))
    pipeline, _ = _pipeline(transport)

    await pipeline.get("/api/v1/things")
    await pipeline.post("/api/v1/auth/tenant/login", body={}, include_auth=False)

    assert transport.requests[0].headers["Authorization"] == "Bearer access-1"
    assert "Authorization" not in transport.requests[1].headers


@pytest.mark.asyncio
async def test_no_bearer_without_tokens() -> None:
    transport = FakeTransport(lambda _r: _json(200, {}))
    pipeline, _ = _pipeline(transport, token_store=InMemoryTokenStore())

    await pipeline.get("/x")
    assert "Authorization" not in transport.requests[0].headers


def _auth_backend(
    *,
    valid_token: str = "access-2",
    refresh_status: int = 200,
    refresh_body: dict[str, Any] | None = None,
    refresh_delay: float = 0.0,
) -> FakeTransport:
    async def _handle(request: PreparedRequest) -> HttpResponse:
        if request.path == REFRESH_ENDPOINT:
            if refresh_delay:
                await asyncio.sleep(refresh_delay)
            body = refresh_body if refresh_body is not None else {"access_token": valid_token, "expires_in": 3600}
            return _json(refresh_status, body)
        if request.headers.get("Authorization") == f"Bearer {valid_token}":
            return _json(200, {"path": request.path})
        return _json(401, {"detail": "Token expired"})

    return FakeTransport(_handle)


@pytest.mark.asyncio
async def test_unauthorized_refreshes_and_replays_with_new_token() -> None:
    bus = EventBus()
    store = _store()
    transport = _auth_backend()
    pipeline, _ = _pipeline(transport, token_store=store, event_bus=bus)

    assert await pipeline.get("/api/v1/things") == {"path": "/api/v1/things"}

    refresh_calls = transport.calls_to(REFRESH_ENDPOINT)
    assert len(refresh_calls) == 1
    assert refresh_calls[0].headers["Authorization"] == "Bearer refresh-1"
    assert refresh_calls[0].body == {}

    things = transport.calls_to("/api/v1/things")
    assert [r.headers["Authorization"] for r in things] == ["Bearer access-1", "Bearer access-2"]

    tokens = await store.get_tokens()
    assert tokens is not None
    assert tokens.access_token == "access-2"
    assert tokens.refresh_token == "refresh-1"
    assert bus.get_event_count(EventType.AUTH_TOKEN_REFRESHED) == 1


@pytest.mark.asyncio
async def test_refresh_rotates_refresh_token_when_returned() -> None:
    store = _store()
    transport = _auth_backend(refresh_body={"access_token": "access-2", "refresh_token": "refresh-2"})
    pipeline, _ = _pipeline(transport, token_store=store)

    await pipeline.get("/x")

    tokens = await store.get_tokens()
    assert tokens is not None
    assert tokens.refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_concurrent_unauthorized_requests_share_one_refresh() -> None:
    transport = _auth_backend(refresh_delay=0.01)
    pipeline, _ = _pipeline(transport)

    results = await asyncio.gather(*(pipeline.get(f"/api/v1/things/{i}") for i in range(5)))

    assert [r["path"] for r in results] == [f"/api/v1/things/{i}" for i in range(5)]
    assert len(transport.calls_to(REFRESH_ENDPOINT)) == 1


@pytest.mark.asyncio
async def test_replay_uses_token_refreshed_by_someone_else() -> None:
    store = _store()

    async def _handle(request: PreparedRequest) -> HttpResponse:
        if request.path == REFRESH_ENDPOINT:
            raise AssertionError("refresh must not be called")
        if request.headers.get("Authorization") == "Bearer rotated":
            return _json(200, {"ok": True})
        tokens = await store.get_tokens()
        assert tokens is not None
        await store.save_tokens(tokens.with_access_token("rotated"))
        return _json(401, {})

    transport = FakeTransport(_handle)
    pipeline, _ = _pipeline(transport, token_store=store)

    assert await pipeline.get("/x") == {"ok": True}
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_failed_refresh_clears_tokens_and_surfaces_original_401() -> None:
    bus = EventBus()
    store = _store()
    transport = _auth_backend(refresh_status=401, refresh_body={"detail": "refresh expired"})
    pipeline, _ = _pipeline(transport, token_store=store, event_bus=bus)

    with pytest.raises(BridgeCoreUnauthorizedError) as exc_info:
        await pipeline.get("/api/v1/things")

    assert exc_info.value.endpoint == "/api/v1/things"
    assert exc_info.value.message == "Token expired"
    assert await store.get_tokens() is None
    assert bus.get_event_count(EventType.AUTH_TOKEN_REFRESH_FAILED) == 1
    assert len(transport.calls_to("/api/v1/things")) == 1


@pytest.mark.asyncio
async def test_concurrent_unauthorized_requests_share_one_failed_refresh() -> None:
    bus = EventBus()
    store = _store()
    transport = _auth_backend(refresh_status=401, refresh_body={"detail": "refresh expired"}, refresh_delay=0.01)
    pipeline, _ = _pipeline(transport, token_store=store, event_bus=bus)

    results = await asyncio.gather(
        *(pipeline.get(f"/api/v1/things/{i}") for i in range(4)),
        return_exceptions=True,
    )

    assert all(isinstance(r, BridgeCoreUnauthorizedError) for r in results)
    assert len(transport.calls_to(REFRESH_ENDPOINT)) == 1
    assert await store.get_tokens() is None
    assert bus.get_event_count(EventType.AUTH_TOKEN_REFRESH_FAILED) == 1
    assert pipeline.get_metrics()["failed_requests"] == 4


@pytest.mark.asyncio
async def test_refresh_accepts_numeric_string_expiry() -> None:
    store = _store()
    transport = _auth_backend(refresh_body={"access_token": "access-2", "expires_in": "3600"})
    pipeline, _ = _pipeline(transport, token_store=store)

    assert await pipeline.get("/x") == {"path": "/x"}

    tokens = await store.get_tokens()
    assert tokens is not None
    assert tokens.access_token == "access-2"
    assert tokens.access_expires_at is not None


@pytest.mark.asyncio
async def test_refresh_with_malformed_expiry_is_a_refresh_failure() -> None:
    store = _store()
    transport = _auth_backend(refresh_body={"access_token": "access-2", "expires_in": "soon"})
    pipeline, _ = _pipeline(transport, token_store=store)

    with pytest.raises(BridgeCoreUnauthorizedError):
        await pipeline.get("/x")

    assert await store.get_tokens() is None
    metrics = pipeline.get_metrics()
    assert metrics["failed_requests"] == 1
    assert metrics["recent_requests"][0]["status_code"] == 401


@pytest.mark.asyncio
async def test_cancelled_request_still_closes_its_metric() -> None:
    never = asyncio.Event()

    async def _handle(_request: PreparedRequest) -> HttpResponse:
        await never.wait()
        return _json(200, {})

    pipeline, _ = _pipeline(FakeTransport(_handle))
    task = asyncio.create_task(pipeline.get("/slow"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    metrics = pipeline.get_metrics()
    assert metrics["failed_requests"] == 1
    assert metrics["recent_requests"][0]["error"] == "CancelledError"


@pytest.mark.asyncio
async def test_refresh_without_access_token_in_response_fails() -> None:
    store = _store()
    transport = _auth_backend(refresh_body={"token_type": "bearer"})
    pipeline, _ = _pipeline(transport, token_store=store)

    with pytest.raises(BridgeCoreUnauthorizedError):
        await pipeline.get("/x")
    assert await store.get_tokens() is None


@pytest.mark.asyncio
async def test_request_is_replayed_at_most_once() -> None:
    def _handle(request: PreparedRequest) -> HttpResponse:
        if request.path == REFRESH_ENDPOINT:
            return _json(200, {"access_token": "access-2"})
        return _json(401, {"detail": "still no"})

    transport = FakeTransport(_handle)
    pipeline, _ = _pipeline(transport)

    with pytest.raises(BridgeCoreUnauthorizedError):
        await pipeline.get("/x")
    assert len(transport.calls_to("/x")) == 2
    assert len(transport.calls_to(REFRESH_ENDPOINT)) == 1


@pytest.mark.asyncio
async def test_unauthenticated_call_is_not_refreshed() -> None:
    transport = _auth_backend()
    pipeline, _ = _pipeline(transport)

    with pytest.raises(BridgeCoreUnauthorizedError):
        await pipeline.post("/api/v1/auth/tenant/login", body={}, include_auth=False)
    assert transport.calls_to(REFRESH_ENDPOINT) == []


@pytest.mark.asyncio
async def test_explicit_refresh_without_refresh_token_raises() -> None:
    transport = FakeTransport(lambda _r: _json(200, {}))
    pipeline, _ = _pipeline(transport, token_store=InMemoryTokenStore())

    with pytest.raises(BridgeCoreUnauthorizedError, match="No refresh token"):
        await pipeline.refresh_access_token()
    assert transport.requests == []


# ---------------------------------------------------------------------------
# Cache and metrics
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cached_get_skips_network() -> None:
    transport = FakeTransport(lambda r: _json(200, {"params": dict(r.params or {})}))
    pipeline, _ = _pipeline(transport, cache_enabled=True)

    first = await pipeline.get("/x", params={"a": 1}, use_cache=True)
    second = await pipeline.get("/x", params={"a": 1}, use_cache=True)
    await pipeline.get("/x", params={"a": 2}, use_cache=True)
    await pipeline.get("/x", params={"a": 1})

    assert first == second == {"params": {"a": 1}}
    assert len(transport.requests) == 3
    assert pipeline.get_cache_stats()["total_entries"] == 2


@pytest.mark.asyncio
async def test_cache_is_bypassed_when_disabled() -> None:
    transport = FakeTransport(lambda _r: _json(200, {}))
    pipeline, _ = _pipeline(transport)

    await pipeline.get("/x", use_cache=True)
    await pipeline.get("/x", use_cache=True)
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_clear_cache_publishes_event() -> None:
    bus = EventBus()
    transport = FakeTransport(lambda _r: _json(200, {}))
    pipeline, _ = _pipeline(transport, cache_enabled=True, event_bus=bus)

    await pipeline.get("/x", use_cache=True)
    pipeline.clear_cache()
    await pipeline.get("/x", use_cache=True)

    assert len(transport.requests) == 2
    assert bus.get_event_count(EventType.CACHE_CLEARED) == 1


@pytest.mark.asyncio
async def test_metrics_count_one_record_per_logical_request() -> None:
    transport = FakeTransport.scripted(_json(503, {}), _json(200, {}), _json(404, {}))
    pipeline, _ = _pipeline(transport)

    await pipeline.get("/x")
    with pytest.raises(BridgeCoreNotFoundError):
        await pipeline.get("/y")

    summary = pipeline.get_metrics()
    assert summary["total_requests"] == 2
    assert summary["successful_requests"] == 1
    assert summary["failed_requests"] == 1
    assert summary["success_rate"] == pytest.approx(0.5)

    stats = pipeline.get_endpoint_stats()
    assert stats["GET_/x"]["successful"] == 1
    assert stats["GET_/y"]["failed"] == 1
    assert summary["recent_requests"][-1]["status_code"] == 404


def test_setters_validate_and_apply() -> None:
    pipeline, _ = _pipeline(FakeTransport(lambda _r: _json(200, {})), cache_enabled=True)

    pipeline.set_max_retries(5)
    pipeline.set_retry_enabled(False)
    pipeline.set_cache_enabled(False)
    pipeline.set_debug_mode(True)

    assert pipeline.max_retries == 5
    assert pipeline.debug is True
    assert pipeline.retry_enabled is False
    assert pipeline.get_cache_stats()["enabled"] is False
    with pytest.raises(ValueError):
        pipeline.set_max_retries(-1)
