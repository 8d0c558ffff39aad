"""Custom exception hierarchy for pybridgecore."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class BridgeCoreError(Exception):
    """Base exception for all pybridgecore errors."""


class BridgeCoreConfigError(BridgeCoreError):
    """Invalid or missing configuration."""


class BridgeCoreApiError(BridgeCoreError):
    """A request against the BridgeCore REST API failed.

    Every classified failure carries the same context: the human readable
    message, the HTTP status (``None`` when no response was received), the
    request path and method, and the JSON detail payload returned by the
    server, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
        method: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        self.method = method
        self.details = details
        self.timestamp = datetime.now(UTC)
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f" (Status: {self.status_code})")
        if self.endpoint:
            parts.append(f" [Endpoint: {self.method} {self.endpoint}]")
        if self.details:
            parts.append(f"\nDetails: {self.details}")
        return "".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Serialisable view of the error."""
        return {
            "message": self.message,
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "method": self.method,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class BridgeCoreValidationError(BridgeCoreApiError):
    """400 - request payload rejected."""


class BridgeCoreUnauthorizedError(BridgeCoreApiError):
    """401 - missing, invalid or expired token.

    Raised after the automatic refresh-and-replay cycle could not recover
    the request.
    """


class BridgeCoreForbiddenError(BridgeCoreApiError):
    """403 - authenticated but not allowed."""


class BridgeCoreTenantSuspendedError(BridgeCoreForbiddenError):
    """403 whose message says the tenant account is suspended."""


class BridgeCoreNotFoundError(BridgeCoreApiError):
    """404 - resource not found."""


class BridgeCoreServerError(BridgeCoreApiError):
    """5xx - server or gateway failure, surfaced after retries are exhausted."""


class BridgeCoreNetworkError(BridgeCoreApiError):
    """Timeout or connection failure; no usable HTTP response."""


class LiveTrackingError(BridgeCoreError):
    """Base for WebSocket live tracking failures."""


class LiveTrackingConnectionError(LiveTrackingError):
    """WebSocket handshake failed."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class LiveTrackingClosedError(LiveTrackingError):
    """The live tracking client was disposed while a request was pending."""


class MessageDecodeError(BridgeCoreError):
    """A WebSocket frame is not a JSON object with a ``type`` field."""
