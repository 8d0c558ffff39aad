"""Process-wide event bus.

Components that want other parts of an application to react to them
(login/logout, token refresh, WebSocket connection changes) emit a
:class:`BridgeCoreEvent` here instead of depending on their listeners.
The bus is a plain observer registry; create one per process and pass it
to the collaborators that emit.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_logger = logging.getLogger(__name__)

MAX_HISTORY = 100


class EventType(StrEnum):
    AUTH_LOGIN = "auth.login"
    AUTH_LOGOUT = "auth.logout"
    AUTH_LOGIN_FAILED = "auth.login_failed"
    AUTH_TOKEN_REFRESHED = "auth.token_refreshed"
    AUTH_TOKEN_REFRESH_FAILED = "auth.token_refresh_failed"
    AUTH_SESSION_EXPIRED = "auth.session_expired"

    WEBSOCKET_CONNECTED = "websocket.connected"
    WEBSOCKET_DISCONNECTED = "websocket.disconnected"
    WEBSOCKET_MESSAGE = "websocket.message"
    WEBSOCKET_ERROR = "websocket.error"
    WEBSOCKET_RECONNECTING = "websocket.reconnecting"

    CACHE_CLEARED = "cache.cleared"

    ERROR_NETWORK = "error.network"
    ERROR_SERVER = "error.server"


class BridgeCoreEvent(BaseModel):
    """Something that happened inside the SDK."""

    model_config = ConfigDict(frozen=True)

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: str | None = None
    id: str | None = None

    def is_type(self, event_type: str) -> bool:
        return self.type == event_type


EventListener = Callable[[BridgeCoreEvent], None]
EventFilter = Callable[[BridgeCoreEvent], bool]


class EventBus:
    """Synchronous fan-out of events to registered listeners.

    Listeners run in registration order on the emitting task. A listener
    that raises is logged and skipped; delivery to the others continues.
    """

    def __init__(self, *, max_history: int = MAX_HISTORY) -> None:
        self._listeners: list[tuple[Callable[[str], bool], EventListener]] = []
        self._filters: dict[str, EventFilter] = {}
        self._history: deque[BridgeCoreEvent] = deque(maxlen=max_history)
        self._counts: dict[str, int] = {}
        self._total = 0
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def _subscribe(self, matcher: Callable[[str], bool], listener: EventListener) -> Callable[[], None]:
        entry = (matcher, listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(entry)

        return _unsubscribe

    def on(self, event_type: str, listener: EventListener) -> Callable[[], None]:
        """Listen to one event type. Returns an unsubscribe callable."""
        return self._subscribe(lambda t: t == event_type, listener)

    def on_many(self, event_types: list[str], listener: EventListener) -> Callable[[], None]:
        wanted = frozenset(event_types)
        return self._subscribe(lambda t: t in wanted, listener)

    def on_pattern(self, prefix: str, listener: EventListener) -> Callable[[], None]:
        """Listen to every event type starting with *prefix* (e.g. ``"websocket."``)."""
        return self._subscribe(lambda t: t.startswith(prefix), listener)

    def on_any(self, listener: EventListener) -> Callable[[], None]:
        return self._subscribe(lambda _t: True, listener)

    def add_filter(self, event_type: str, predicate: EventFilter) -> None:
        """Drop events of *event_type* for which *predicate* returns ``False``."""
        self._filters[event_type] = predicate

    def remove_filter(self, event_type: str) -> None:
        self._filters.pop(event_type, None)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def emit(
        self,
        event_type: str,
        data: dict[str, Any] | None = None,
        *,
        source: str | None = None,
    ) -> BridgeCoreEvent | None:
        """Publish an event. Returns it, or ``None`` when a filter dropped it."""
        event = BridgeCoreEvent(
            type=str(event_type),
            data=dict(data or {}),
            source=source,
            id=f"{int(datetime.now(UTC).timestamp() * 1000)}_{next(self._ids)}",
        )

        predicate = self._filters.get(event.type)
        if predicate is not None and not predicate(event):
            _logger.debug("Event filtered: %s", event.type)
            return None

        self._total += 1
        self._counts[event.type] = self._counts.get(event.type, 0) + 1
        self._history.append(event)
        _logger.debug("Event emitted: %s", event.type)

        for matcher, listener in list(self._listeners):
            if not matcher(event.type):
                continue
            try:
                listener(event)
            except Exception:
                _logger.warning("Event listener failed for %s", event.type, exc_info=True)
        return event

    async def wait_for(
        self,
        event_type: str,
        *,
        timeout: float | None = None,
        condition: EventFilter | None = None,
    ) -> BridgeCoreEvent:
        """Wait for the next matching event.

        Raises :class:`TimeoutError` when *timeout* elapses first.
        """
        fut: asyncio.Future[BridgeCoreEvent] = asyncio.get_running_loop().create_future()

        def _listener(event: BridgeCoreEvent) -> None:
            if fut.done():
                return
            if condition is None or condition(event):
                fut.set_result(event)

        unsubscribe = self.on(event_type, _listener)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            unsubscribe()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[BridgeCoreEvent]:
        return list(self._history)

    def get_event_count(self, event_type: str) -> int:
        return self._counts.get(event_type, 0)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "total_events": self._total,
            "event_counts": dict(self._counts),
            "history_size": len(self._history),
            "active_filters": len(self._filters),
            "active_listeners": len(self._listeners),
        }

    def reset(self) -> None:
        """Drop filters, history and statistics. Listeners stay registered."""
        self._filters.clear()
        self._history.clear()
        self._counts.clear()
        self._total = 0
