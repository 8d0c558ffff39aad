"""Base model and shared field helpers for BridgeCore payloads.

Every response model inherits from :class:`BridgeCoreBaseModel` which
provides:

* frozen, extra-tolerant parsing (the backend adds fields freely),
* a ``model_validator(mode="before")`` that drops ``None`` values so the
  field default is used,
* a ``raw`` dict that captures the original payload.

Odoo-backed payloads send relational fields as ``[id, "Display name"]``
pairs; :func:`many2one_id` and :func:`many2one_name` unpack them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce an ISO-8601 string or epoch number (s or ms) to an aware datetime.

    ``None``, empty strings and Odoo's ``False`` become ``None``.
    """
    if value is None or value is False or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


def _now_if_missing(value: Any) -> datetime:
    parsed = parse_timestamp(value)
    return parsed if parsed is not None else datetime.now(UTC)


Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Optional timestamp accepting ISO strings or epoch numbers."""

ReceivedAt = Annotated[datetime, BeforeValidator(_now_if_missing)]
"""Timestamp that defaults to *now* when the payload omits it."""


def many2one_id(value: Any) -> int | None:
    """``[5, "Bus 5"]`` -> ``5``; plain ints pass through; ``False`` -> ``None``."""
    if isinstance(value, (list, tuple)):
        return int(value[0]) if value else None
    if value is None or value is False:
        return None
    return int(value)


def many2one_name(value: Any) -> str | None:
    """``[5, "Bus 5"]`` -> ``"Bus 5"``; anything else -> ``None``."""
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        return str(value[-1])
    return None


class BridgeCoreBaseModel(BaseModel):
    """Base for BridgeCore payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        """Drop ``None`` values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = {k: v for k, v in values.items() if v is not None}
        # Keep an explicitly passed raw= (kwargs construction).
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict without ``None`` fields or the raw payload."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"raw"})
