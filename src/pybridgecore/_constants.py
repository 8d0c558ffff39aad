"""Internal constants shared across the library."""

USER_AGENT = "pybridgecore"

# ------------------------------------------------------------------
# REST endpoints
# ------------------------------------------------------------------

LOGIN_ENDPOINT = "/api/v1/auth/tenant/login"
REFRESH_ENDPOINT = "/api/v1/auth/tenant/refresh"
LOGOUT_ENDPOINT = "/api/v1/auth/tenant/logout"
ME_ENDPOINT = "/api/v1/auth/tenant/me"

# ------------------------------------------------------------------
# Request pipeline
# ------------------------------------------------------------------

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({500, 502, 503, 504})
SERVER_ERROR_STATUS_CODES: frozenset[int] = frozenset({500, 502, 503, 504})

# ------------------------------------------------------------------
# Live tracking
# ------------------------------------------------------------------

WS_PATH = "/api/v1/ws"

VEHICLE_POSITION_MODEL = "shuttle.vehicle.position"
TRIP_MODEL = "shuttle.trip"
GPS_POSITION_MODEL = "shuttle.gps.position"
