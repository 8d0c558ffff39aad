"""WebSocket live tracking channel.

:class:`LiveTrackingClient` keeps one WebSocket per user to
``<ws|wss>://host<ws_path>/<user_id>``. After an unexpected close it
reconnects with a linear backoff (``reconnect_delay * attempt``) until
``max_reconnect_attempts`` is reached. Inbound frames are decoded by
:func:`~pybridgecore.models.messages.parse_inbound` and fanned out to
typed :class:`Broadcast` streams; connection changes are also published
on the :class:`~pybridgecore.events.EventBus`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Generic, TypeVar
from urllib.parse import urlsplit

import aiohttp
from pydantic import ValidationError

from pybridgecore._constants import GPS_POSITION_MODEL, TRIP_MODEL, VEHICLE_POSITION_MODEL, WS_PATH
from pybridgecore.events import EventBus, EventType
from pybridgecore.exceptions import LiveTrackingClosedError, LiveTrackingConnectionError, MessageDecodeError
from pybridgecore.models.messages import (
    DriverStatusMessage,
    DriverStatusUpdateCommand,
    ErrorMessage,
    LocationRequestMessage,
    LocationResponseCommand,
    LocationResponseMessage,
    PingCommand,
    PongMessage,
    RequestDriverLocationCommand,
    StatusMessage,
    SubscribeLiveTrackingCommand,
    SubscribeModelChannelCommand,
    UnsubscribeModelChannelCommand,
    WebhookEventMessage,
    WsCommand,
    encode_command,
    parse_inbound,
)
from pybridgecore.models.tracking import (
    DriverLocation,
    DriverStatus,
    DriverStatusUpdate,
    LocationRequest,
    TripUpdate,
    VehiclePosition,
)

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_END = object()


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def build_ws_url(base_url: str, user_id: int | str, ws_path: str = WS_PATH) -> str:
    """Derive the live tracking URL from the REST base URL.

    ``https``/``wss`` map to ``wss``, anything else to ``ws``. Only host and
    port of *base_url* are kept.
    """
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    path = "/" + ws_path.strip("/")
    return f"{scheme}://{parts.netloc}{path}/{user_id}"


class Subscription(Generic[T]):
    """Async iterator over the items published to a :class:`Broadcast`.

    Items published after :meth:`Broadcast.subscribe` returned are queued,
    even before iteration starts. Iteration ends when the broadcast closes.
    """

    def __init__(self, broadcast: Broadcast[T]) -> None:
        self._broadcast = broadcast
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    def _put(self, item: Any) -> None:
        self._queue.put_nowait(item)

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _END:
            self.close()
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        self._broadcast._subscriptions.discard(self)


class Broadcast(Generic[T]):
    """A typed multi-listener stream.

    Supports synchronous callbacks (:meth:`add_listener`) and async
    iteration (:meth:`subscribe`). Nothing is replayed to late subscribers.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[[T], None]] = []
        self._subscriptions: set[Subscription[T]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def subscribe(self) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self)
        if self._closed:
            subscription._put(_END)
        else:
            self._subscriptions.add(subscription)
        return subscription

    def publish(self, item: T) -> None:
        if self._closed:
            return
        for listener in list(self._listeners):
            try:
                listener(item)
            except Exception:
                _logger.warning("Listener on %s stream failed", self.name, exc_info=True)
        for subscription in list(self._subscriptions):
            subscription._put(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        for subscription in list(self._subscriptions):
            subscription._put(_END)


class LiveTrackingClient:
    """Client for the live tracking WebSocket.

    Usage::

        live = client.live_tracking
        live.vehicle_positions.add_listener(print)
        await live.connect(user_id)
        await live.subscribe_live_tracking()
        location = await live.request_driver_location(driver_id=7)

    Parameters
    ----------
    base_url : str
        REST base URL; scheme, host and port are reused for the socket.
    event_bus : EventBus or None
        Receives ``websocket.*`` events.
    session : aiohttp.ClientSession
        Used for ``ws_connect``. Not closed by this client.
    ws_path : str
        Path prefix of the endpoint; the user id is appended.
    reconnect_delay : float
        Base reconnect delay in seconds.
    max_reconnect_attempts : int
        Attempts before giving up; a later :meth:`connect` resumes.
    heartbeat : float or None
        aiohttp heartbeat interval.
    location_request_timeout : float
        Default timeout of :meth:`request_driver_location`.
    """

    def __init__(
        self,
        base_url: str,
        event_bus: EventBus | None = None,
        *,
        session: aiohttp.ClientSession,
        ws_path: str = WS_PATH,
        reconnect_delay: float = 3.0,
        max_reconnect_attempts: int = 5,
        heartbeat: float | None = None,
        location_request_timeout: float = 10.0,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url
        self._bus = event_bus
        self._session = session
        self._ws_path = ws_path
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._heartbeat = heartbeat
        self._location_request_timeout = location_request_timeout
        self._sleep = sleep

        self._ws: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._state = ConnectionState.DISCONNECTED
        self._user_id: str | None = None
        self._url: str | None = None
        self._reconnect_attempts = 0
        self._closing = False
        self._disposed = False
        # Bumped by disconnect(); a handshake started under an older value is stale.
        self._generation = 0
        self._pending: dict[str, asyncio.Future[DriverLocation]] = {}

        self.vehicle_positions: Broadcast[VehiclePosition] = Broadcast("vehicle_positions")
        self.trip_updates: Broadcast[TripUpdate] = Broadcast("trip_updates")
        self.location_requests: Broadcast[LocationRequest] = Broadcast("location_requests")
        self.location_responses: Broadcast[DriverLocation] = Broadcast("location_responses")
        self.driver_statuses: Broadcast[DriverStatusUpdate] = Broadcast("driver_statuses")
        self.connection_status: Broadcast[bool] = Broadcast("connection_status")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def url(self) -> str | None:
        return self._url

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        was_connected = self._state is ConnectionState.CONNECTED
        self._state = state
        _logger.debug("Live tracking state: %s", state)
        if was_connected != (state is ConnectionState.CONNECTED):
            self.connection_status.publish(state is ConnectionState.CONNECTED)

    def _emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        if self._bus is not None:
            self._bus.emit(event_type, data, source="live_tracking")

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, user_id: int | str) -> None:
        """Open the socket for *user_id*.

        A no-op when already connected (or connecting) for the same user; a
        different user closes the current socket first.

        Raises
        ------
        LiveTrackingConnectionError
            If the handshake failed. A reconnect has been scheduled.
        LiveTrackingClosedError
            If the client was disposed.
        """
        if self._disposed:
            raise LiveTrackingClosedError("Live tracking client is disposed")
        user = str(user_id)
        if self._user_id == user and self._state is not ConnectionState.DISCONNECTED:
            _logger.debug("Already connected for user %s", user)
            return
        if self._state is not ConnectionState.DISCONNECTED or self._reconnect_task is not None:
            await self.disconnect()

        self._user_id = user
        self._closing = False
        await self._open()

    async def disconnect(self) -> None:
        """Close the socket and stop reconnecting. Safe to call repeatedly."""
        self._closing = True
        self._generation += 1
        self._cancel_reconnect()

        ws, reader = self._ws, self._reader_task
        self._ws = None
        self._reader_task = None
        was_connected = self._state is ConnectionState.CONNECTED

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if ws is not None:
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError) as exc:
                _logger.debug("Error while closing live tracking socket: %s", exc)
        if reader is not None and reader is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            _logger.info("Live tracking disconnected")
            self._emit(EventType.WEBSOCKET_DISCONNECTED, {"user_id": self._user_id})

    async def dispose(self) -> None:
        """Disconnect for good.

        Outstanding :meth:`request_driver_location` calls fail with
        :class:`LiveTrackingClosedError` and every stream is closed.
        """
        if self._disposed:
            return
        self._disposed = True
        await self.disconnect()

        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(LiveTrackingClosedError("Live tracking client disposed"))

        for stream in (
            self.vehicle_positions,
            self.trip_updates,
            self.location_requests,
            self.location_responses,
            self.driver_statuses,
            self.connection_status,
        ):
            stream.close()

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation or self._closing or self._disposed

    async def _open(self) -> None:
        generation = self._generation
        url = build_ws_url(self._base_url, self._user_id or "", self._ws_path)
        self._url = url
        self._set_state(ConnectionState.CONNECTING)
        _logger.info("Connecting live tracking to %s", url)

        try:
            ws = await self._session.ws_connect(url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            if self._is_stale(generation):
                _logger.debug("Abandoned live tracking handshake to %s failed: %s", url, exc)
                return
            self._set_state(ConnectionState.DISCONNECTED)
            _logger.warning("Live tracking connection to %s failed: %s", url, exc)
            self._emit(EventType.WEBSOCKET_ERROR, {"error": str(exc)})
            self._schedule_reconnect()
            raise LiveTrackingConnectionError(f"Could not connect to {url}: {exc}", url=url) from exc

        if self._is_stale(generation):
            _logger.debug("Closing live tracking socket to %s opened after disconnect", url)
            with contextlib.suppress(aiohttp.ClientError, ConnectionError):
                await ws.close()
            return

        self._ws = ws
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        _logger.info("Live tracking connected for user %s", self._user_id)
        self._emit(EventType.WEBSOCKET_CONNECTED, {"user_id": self._user_id, "url": url})
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop(ws))

    async def _read_loop(self, ws: Any) -> None:
        error: BaseException | None = None
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
        except (aiohttp.ClientError, ConnectionError) as exc:
            error = exc

        if ws is not self._ws:
            # Closed on purpose or replaced by a newer socket.
            return
        self._on_connection_lost(error)
        with contextlib.suppress(aiohttp.ClientError, ConnectionError):
            await ws.close()

    def _on_connection_lost(self, error: BaseException | None) -> None:
        self._ws = None
        self._reader_task = None
        self._set_state(ConnectionState.DISCONNECTED)
        if error is not None:
            _logger.warning("Live tracking socket error: %s", error)
            self._emit(EventType.WEBSOCKET_ERROR, {"error": str(error)})
        else:
            _logger.info("Live tracking socket closed by server")
        self._emit(EventType.WEBSOCKET_DISCONNECTED, {"user_id": self._user_id})
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or self._disposed or self._user_id is None:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._reconnect_attempts >= self._max_reconnect_attempts:
            _logger.error(
                "Live tracking gave up after %d reconnect attempts", self._reconnect_attempts
            )
            return

        self._reconnect_attempts += 1
        delay = self._reconnect_delay * self._reconnect_attempts
        _logger.info(
            "Reconnecting live tracking in %.1fs (attempt %d/%d)",
            delay,
            self._reconnect_attempts,
            self._max_reconnect_attempts,
        )
        self._emit(
            EventType.WEBSOCKET_RECONNECTING,
            {"attempt": self._reconnect_attempts, "delay_seconds": delay},
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_task = None
        if self._closing or self._disposed or self._state is not ConnectionState.DISCONNECTED:
            return
        with contextlib.suppress(LiveTrackingConnectionError):
            # _open logged the failure and scheduled the next attempt.
            await self._open()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, command: WsCommand) -> bool:
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED:
            _logger.warning("Live tracking not connected; dropping %s", command.type)
            return False
        try:
            await ws.send_str(encode_command(command))
        except (aiohttp.ClientError, ConnectionError) as exc:
            _logger.warning("Failed to send %s: %s", command.type, exc)
            self._emit(EventType.WEBSOCKET_ERROR, {"error": str(exc)})
            return False
        return True

    async def subscribe_live_tracking(self) -> None:
        await self._send(SubscribeLiveTrackingCommand())

    async def subscribe_to_model(self, model: str) -> None:
        """Receive ``webhook_event`` frames for an Odoo model, e.g. ``"shuttle.trip"``."""
        await self._send(SubscribeModelChannelCommand(model=model))

    async def unsubscribe_from_model(self, model: str) -> None:
        await self._send(UnsubscribeModelChannelCommand(model=model))

    async def ping(self) -> None:
        await self._send(PingCommand())

    async def update_driver_status(self, status: DriverStatus | str, vehicle_id: int | None = None) -> None:
        await self._send(DriverStatusUpdateCommand(status=DriverStatus(status), vehicle_id=vehicle_id))

    async def send_location_response(
        self,
        request_id: str,
        requester_id: int,
        latitude: float,
        longitude: float,
        *,
        speed: float | None = None,
        heading: float | None = None,
        accuracy: float | None = None,
    ) -> None:
        """Answer a :class:`LocationRequest` received on :attr:`location_requests`."""
        await self._send(
            LocationResponseCommand(
                request_id=request_id,
                requester_id=requester_id,
                latitude=latitude,
                longitude=longitude,
                speed=speed,
                heading=heading,
                accuracy=accuracy,
            )
        )

    async def request_driver_location(
        self,
        driver_id: int,
        timeout: float | None = None,
    ) -> DriverLocation | None:
        """Ask a driver for their current position.

        Returns
        -------
        DriverLocation or None
            The answer, or ``None`` when not connected or nothing arrived
            within *timeout* seconds.

        Raises
        ------
        LiveTrackingClosedError
            If the client is disposed while waiting.
        """
        effective_timeout = timeout if timeout is not None else self._location_request_timeout
        request_id = str(uuid.uuid4())
        future: asyncio.Future[DriverLocation] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            sent = await self._send(RequestDriverLocationCommand(driver_id=driver_id, request_id=request_id))
            if not sent:
                return None
            return await asyncio.wait_for(future, effective_timeout)
        except TimeoutError:
            _logger.warning("Location request %s for driver %s timed out", request_id, driver_id)
            return None
        finally:
            self._pending.pop(request_id, None)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_frame(self, data: str | bytes) -> None:
        try:
            message = parse_inbound(data)
        except MessageDecodeError as exc:
            _logger.warning("Dropping live tracking frame: %s", exc)
            return

        self._emit(EventType.WEBSOCKET_MESSAGE, {"type": message.type, "message": message.raw})

        if isinstance(message, PongMessage):
            _logger.debug("Pong received")
        elif isinstance(message, StatusMessage):
            _logger.info("Live tracking status: %s", message.message)
        elif isinstance(message, ErrorMessage):
            _logger.warning("Live tracking server error: %s", message.message)
        elif isinstance(message, WebhookEventMessage):
            self._handle_webhook(message)
        elif isinstance(message, LocationRequestMessage):
            self.location_requests.publish(message)
        elif isinstance(message, LocationResponseMessage):
            self._handle_location_response(message)
        elif isinstance(message, DriverStatusMessage):
            self.driver_statuses.publish(message)
        else:
            _logger.debug("Unhandled live tracking message type: %s", message.type)

    def _handle_webhook(self, message: WebhookEventMessage) -> None:
        try:
            if message.model == VEHICLE_POSITION_MODEL:
                self.vehicle_positions.publish(VehiclePosition.model_validate(message.data))
            elif message.model == TRIP_MODEL:
                self.trip_updates.publish(TripUpdate.model_validate(message.raw))
            elif message.model == GPS_POSITION_MODEL:
                _logger.debug("GPS position webhook for record %s", message.record_id)
            else:
                _logger.debug("Ignoring webhook event for model %s", message.model)
        except ValidationError as exc:
            _logger.warning("Invalid %s webhook payload: %d error(s)", message.model, exc.error_count())

    def _handle_location_response(self, message: LocationResponseMessage) -> None:
        self.location_responses.publish(message)
        if message.request_id is None:
            return
        future = self._pending.pop(message.request_id, None)
        if future is None:
            _logger.debug("No pending location request %s", message.request_id)
            return
        if not future.done():
            future.set_result(message)
