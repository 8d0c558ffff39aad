"""Redaction of credentials in values written to DEBUG logs.

BridgeCore bodies carry login passwords, access/refresh JWTs and, in
error texts, echoed ``Authorization`` headers. Keys are compared after
dropping case, ``_`` and ``-``, so ``refresh_token``, ``refreshToken`` and
``Refresh-Token`` are all caught.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

REDACTED = "<redacted>"

_SECRET_KEYS: frozenset[str] = frozenset({"authorization", "cookie", "setcookie", "apikey", "xapikey"})
_SECRET_SUFFIXES: tuple[str, ...] = ("password", "token", "secret")

_BEARER_RE = re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9._~+/=-]+")
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*")

_MAX_DEPTH = 20


def _is_secret_key(key: str) -> bool:
    normalized = key.lower().replace("_", "").replace("-", "")
    return normalized in _SECRET_KEYS or normalized.endswith(_SECRET_SUFFIXES)


def scrub_text(text: str) -> str:
    """Mask bearer credentials and JWTs embedded in free text."""
    text = _BEARER_RE.sub(rf"\1 {REDACTED}", text)
    return _JWT_RE.sub(REDACTED, text)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with credentials masked and long strings cut."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude={"raw"} if "raw" in type(value).model_fields else None)

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        text = scrub_text(value)
        return text if len(text) <= max_string else f"{text[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(key): REDACTED
            if _is_secret_key(str(key))
            else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]

    return repr(value)
