"""Live tracking models."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator, model_validator

from pybridgecore.models._base import BridgeCoreBaseModel, ReceivedAt, Timestamp, many2one_id, many2one_name


class DriverStatus(enum.StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"
    AVAILABLE = "available"

    @classmethod
    def _missing_(cls, value: object) -> DriverStatus:
        return cls.OFFLINE


class DriverLocation(BridgeCoreBaseModel):
    """A driver's position, as answered to an on-demand location request.

    Parameters
    ----------
    driver_id : int
        The driver the position belongs to.
    latitude, longitude : float
        Position in degrees.
    speed, heading, accuracy : float or None
        Optional GPS extras.
    timestamp : datetime
        When the position was taken; *now* when the payload omits it.
    request_id : str or None
        Correlation id of the request being answered.
    """

    driver_id: int
    latitude: float
    longitude: float
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    timestamp: ReceivedAt = Field(default=None, validate_default=True)
    request_id: str | None = None


class VehiclePosition(BridgeCoreBaseModel):
    """A ``shuttle.vehicle.position`` record pushed through a webhook event."""

    id: int = 0
    vehicle_id: int
    driver_id: int | None = None
    latitude: float
    longitude: float
    speed: float | None = None
    heading: float | None = None
    accuracy: float | None = None
    timestamp: ReceivedAt = Field(default=None, validate_default=True)
    note: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _unpack_relations(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        for key in ("vehicle_id", "driver_id"):
            if key in merged:
                merged[key] = many2one_id(merged[key])
        if merged.get("note") is False:
            merged["note"] = None
        return merged


class TripUpdate(BridgeCoreBaseModel):
    """A ``shuttle.trip`` change pushed through a webhook event.

    Built from the whole event envelope: ``record_id``/``event``/``timestamp``
    come from the envelope, the trip fields from its ``data`` dict.
    """

    trip_id: int = 0
    reference: str | None = None
    name: str | None = None
    state: str = "draft"
    driver_id: int | None = None
    driver_name: str | None = None
    vehicle_id: int | None = None
    vehicle_name: str | None = None
    vehicle_plate: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    last_gps_update: Timestamp = None
    event: str = "write"
    timestamp: ReceivedAt = Field(default=None, validate_default=True)

    @model_validator(mode="before")
    @classmethod
    def _flatten_envelope(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        data = values.get("data")
        if not isinstance(data, dict):
            data = values

        trip_id = values.get("record_id") or data.get("id") or values.get("trip_id") or 0
        driver = data.get("driver_id")
        vehicle = data.get("vehicle_id")
        flat: dict[str, Any] = {
            "trip_id": trip_id,
            "reference": data.get("reference") or None,
            "name": data.get("name") or None,
            "state": data.get("state") or "draft",
            "driver_id": many2one_id(driver),
            "driver_name": many2one_name(driver) or data.get("driver_name") or None,
            "vehicle_id": many2one_id(vehicle),
            "vehicle_name": many2one_name(vehicle) or data.get("vehicle_name") or None,
            "vehicle_plate": data.get("vehicle_plate") or None,
            "latitude": data.get("current_latitude", data.get("latitude")),
            "longitude": data.get("current_longitude", data.get("longitude")),
            "last_gps_update": data.get("last_gps_update"),
            "event": values.get("event") or "write",
            "timestamp": values.get("timestamp"),
            "raw": values.get("raw", values),
        }
        return flat

    @property
    def is_ongoing(self) -> bool:
        """Whether the driver should be sending GPS updates."""
        return self.state == "ongoing"

    @property
    def is_completed(self) -> bool:
        return self.state == "done"

    @property
    def is_cancelled(self) -> bool:
        return self.state == "cancelled"


class LocationRequest(BridgeCoreBaseModel):
    """A dispatcher asking this (driver) connection for its position."""

    request_id: str
    requester_id: int
    timestamp: ReceivedAt = Field(default=None, validate_default=True)


class DriverStatusUpdate(BridgeCoreBaseModel):
    """A driver's availability change."""

    driver_id: int
    status: DriverStatus = DriverStatus.OFFLINE
    vehicle_id: int | None = None
    timestamp: ReceivedAt = Field(default=None, validate_default=True)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> DriverStatus:
        return DriverStatus(str(value).strip().lower())
