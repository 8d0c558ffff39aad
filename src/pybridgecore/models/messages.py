"""Live tracking WebSocket frames.

Every frame is a JSON text frame with a mandatory ``type`` field. Inbound
frames are parsed into one variant of :data:`InboundMessage`; types this
library does not know become :class:`UnknownMessage` instead of being
skipped. Outbound commands are pydantic models with a fixed ``type``
literal and are serialised with :func:`encode_command`.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pybridgecore.exceptions import MessageDecodeError
from pybridgecore.models._base import BridgeCoreBaseModel
from pybridgecore.models.tracking import (
    DriverLocation,
    DriverStatus,
    DriverStatusUpdate,
    LocationRequest,
)

# ---------------------------------------------------------------------------
# Outbound commands
# ---------------------------------------------------------------------------


class WsCommand(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str


class SubscribeLiveTrackingCommand(WsCommand):
    type: Literal["subscribe_live_tracking"] = "subscribe_live_tracking"


class SubscribeModelChannelCommand(WsCommand):
    type: Literal["subscribe_model_channel"] = "subscribe_model_channel"
    model: str


class UnsubscribeModelChannelCommand(WsCommand):
    type: Literal["unsubscribe_model_channel"] = "unsubscribe_model_channel"
    model: str


class RequestDriverLocationCommand(WsCommand):
    type: Literal["request_driver_location"] = "request_driver_location"
    driver_id: int
    request_id: str


class LocationResponseCommand(WsCommand):
    """A driver answering a :class:`LocationRequest`; echoes its ``request_id``."""

    type: Literal["location_response"] = "location_response"
    request_id: str
    requester_id: int
    latitude: float
    longitude: float
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DriverStatusUpdateCommand(WsCommand):
    type: Literal["driver_status_update"] = "driver_status_update"
    status: DriverStatus
    vehicle_id: int | None = None


class PingCommand(WsCommand):
    type: Literal["ping"] = "ping"


OutboundCommand = (
    SubscribeLiveTrackingCommand
    | SubscribeModelChannelCommand
    | UnsubscribeModelChannelCommand
    | RequestDriverLocationCommand
    | LocationResponseCommand
    | DriverStatusUpdateCommand
    | PingCommand
)

_COMMANDS: dict[str, type[WsCommand]] = {
    "subscribe_live_tracking": SubscribeLiveTrackingCommand,
    "subscribe_model_channel": SubscribeModelChannelCommand,
    "unsubscribe_model_channel": UnsubscribeModelChannelCommand,
    "request_driver_location": RequestDriverLocationCommand,
    "location_response": LocationResponseCommand,
    "driver_status_update": DriverStatusUpdateCommand,
    "ping": PingCommand,
}


def encode_command(command: WsCommand) -> str:
    """Serialise a command to a JSON text frame, omitting unset optionals."""
    return json.dumps(command.model_dump(mode="json", exclude_none=True), separators=(",", ":"))


# ---------------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------------


class PongMessage(BridgeCoreBaseModel):
    type: Literal["pong"] = "pong"


class StatusMessage(BridgeCoreBaseModel):
    type: Literal["status"] = "status"
    message: str | None = None


class ErrorMessage(BridgeCoreBaseModel):
    type: Literal["error"] = "error"
    message: str | None = None


class WebhookEventMessage(BridgeCoreBaseModel):
    """A record change forwarded from the backend's webhook bus.

    ``model`` is the Odoo model name the change belongs to; ``data`` the
    record values.
    """

    type: Literal["webhook_event"] = "webhook_event"
    model: str | None = None
    event: str = "write"
    record_id: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class LocationRequestMessage(LocationRequest):
    type: Literal["request_location"] = "request_location"


class LocationResponseMessage(DriverLocation):
    type: Literal["location_response"] = "location_response"


class DriverStatusMessage(DriverStatusUpdate):
    type: Literal["driver_status"] = "driver_status"


class UnknownMessage(BridgeCoreBaseModel):
    """A frame whose ``type`` this library does not handle."""

    type: str | None = None


InboundMessage = (
    PongMessage
    | StatusMessage
    | ErrorMessage
    | WebhookEventMessage
    | LocationRequestMessage
    | LocationResponseMessage
    | DriverStatusMessage
    | UnknownMessage
)

_INBOUND: dict[str, type[BridgeCoreBaseModel]] = {
    "pong": PongMessage,
    "status": StatusMessage,
    "error": ErrorMessage,
    "webhook_event": WebhookEventMessage,
    "request_location": LocationRequestMessage,
    "location_response": LocationResponseMessage,
    "driver_status": DriverStatusMessage,
}


def _decode_object(frame: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(frame, dict):
        return frame
    try:
        decoded = json.loads(frame)
    except (TypeError, ValueError) as exc:
        raise MessageDecodeError(f"Frame is not valid JSON: {str(frame)[:64]!r}") from exc
    if not isinstance(decoded, dict):
        raise MessageDecodeError("Frame is not a JSON object")
    return decoded


def parse_inbound(frame: str | bytes | dict[str, Any]) -> InboundMessage:
    """Parse an inbound frame into its message variant.

    Raises
    ------
    MessageDecodeError
        If the frame is not a JSON object, or a known ``type`` carries an
        invalid payload.
    """
    payload = _decode_object(frame)
    message_type = payload.get("type")
    model = _INBOUND.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        return UnknownMessage.model_validate(
            {"type": message_type if isinstance(message_type, str) else None, "raw": payload}
        )
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError as exc:
        raise MessageDecodeError(f"Invalid {message_type!r} frame: {exc.error_count()} error(s)") from exc


def parse_command(frame: str | bytes | dict[str, Any]) -> OutboundCommand:
    """Decode an outbound command frame (the server's view of what we send)."""
    payload = _decode_object(frame)
    model = _COMMANDS.get(payload.get("type"))  # type: ignore[arg-type]
    if model is None:
        raise MessageDecodeError(f"Unknown command type: {payload.get('type')!r}")
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError as exc:
        raise MessageDecodeError(f"Invalid {payload.get('type')!r} command") from exc
