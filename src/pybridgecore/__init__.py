"""pybridgecore - Async Python client for the BridgeCore API."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pybridgecore")
except PackageNotFoundError:
    __version__ = "0+local"
from pybridgecore.client import BridgeCoreClient
from pybridgecore.config import BridgeCoreConfig
from pybridgecore.events import BridgeCoreEvent, EventBus, EventType
from pybridgecore.exceptions import (
    BridgeCoreApiError,
    BridgeCoreConfigError,
    BridgeCoreError,
    BridgeCoreForbiddenError,
    BridgeCoreNetworkError,
    BridgeCoreNotFoundError,
    BridgeCoreServerError,
    BridgeCoreTenantSuspendedError,
    BridgeCoreUnauthorizedError,
    BridgeCoreValidationError,
    LiveTrackingClosedError,
    LiveTrackingConnectionError,
    LiveTrackingError,
    MessageDecodeError,
)
from pybridgecore.live_tracking import Broadcast, ConnectionState, LiveTrackingClient
from pybridgecore.models import (
    DriverLocation,
    DriverStatus,
    DriverStatusUpdate,
    LocationRequest,
    Tenant,
    TenantSession,
    TenantUser,
    TripUpdate,
    UserInfo,
    VehiclePosition,
)
from pybridgecore.session import SessionTokens
from pybridgecore.token_store import InMemoryTokenStore, TokenStore

__all__ = [
    "__version__",
    "BridgeCoreApiError",
    "BridgeCoreClient",
    "BridgeCoreConfig",
    "BridgeCoreConfigError",
    "BridgeCoreError",
    "BridgeCoreEvent",
    "BridgeCoreForbiddenError",
    "BridgeCoreNetworkError",
    "BridgeCoreNotFoundError",
    "BridgeCoreServerError",
    "BridgeCoreTenantSuspendedError",
    "BridgeCoreUnauthorizedError",
    "BridgeCoreValidationError",
    "Broadcast",
    "ConnectionState",
    "DriverLocation",
    "DriverStatus",
    "DriverStatusUpdate",
    "EventBus",
    "EventType",
    "InMemoryTokenStore",
    "LiveTrackingClient",
    "LiveTrackingClosedError",
    "LiveTrackingConnectionError",
    "LiveTrackingError",
    "LocationRequest",
    "MessageDecodeError",
    "SessionTokens",
    "Tenant",
    "TenantSession",
    "TenantUser",
    "TokenStore",
    "TripUpdate",
    "UserInfo",
    "VehiclePosition",
]
