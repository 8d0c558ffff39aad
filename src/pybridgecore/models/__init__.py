"""Data models for pybridgecore."""

from pybridgecore.models.auth import LoginRequest, RefreshResponse, Tenant, TenantSession, TenantUser, UserInfo
from pybridgecore.models.messages import (
    DriverStatusMessage,
    DriverStatusUpdateCommand,
    ErrorMessage,
    InboundMessage,
    LocationRequestMessage,
    LocationResponseCommand,
    LocationResponseMessage,
    OutboundCommand,
    PingCommand,
    PongMessage,
    RequestDriverLocationCommand,
    StatusMessage,
    SubscribeLiveTrackingCommand,
    SubscribeModelChannelCommand,
    UnknownMessage,
    UnsubscribeModelChannelCommand,
    WebhookEventMessage,
    encode_command,
    parse_command,
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

__all__ = [
    "DriverLocation",
    "DriverStatus",
    "DriverStatusMessage",
    "DriverStatusUpdate",
    "DriverStatusUpdateCommand",
    "ErrorMessage",
    "InboundMessage",
    "LocationRequest",
    "LocationRequestMessage",
    "LocationResponseCommand",
    "LocationResponseMessage",
    "LoginRequest",
    "OutboundCommand",
    "PingCommand",
    "PongMessage",
    "RefreshResponse",
    "RequestDriverLocationCommand",
    "StatusMessage",
    "SubscribeLiveTrackingCommand",
    "SubscribeModelChannelCommand",
    "Tenant",
    "TenantSession",
    "TenantUser",
    "TripUpdate",
    "UnknownMessage",
    "UnsubscribeModelChannelCommand",
    "UserInfo",
    "VehiclePosition",
    "WebhookEventMessage",
    "encode_command",
    "parse_command",
    "parse_inbound",
]
