"""HTTP transport: one request/response exchange over aiohttp."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pybridgecore._constants import USER_AGENT
from pybridgecore.exceptions import BridgeCoreNetworkError

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class PreparedRequest:
    """A request as the pipeline hands it to the transport.

    ``retry_attempt`` travels with the request so concurrent calls never
    share a retry counter.
    """

    method: str
    path: str
    body: Mapping[str, Any] | None = None
    params: Mapping[str, Any] | None = None
    headers: Mapping[str, str] = dataclasses.field(default_factory=dict)
    include_auth: bool = True
    retry_attempt: int = 0

    def with_attempt(self, attempt: int) -> PreparedRequest:
        return dataclasses.replace(self, retry_attempt=attempt)

    def with_headers(self, headers: Mapping[str, str]) -> PreparedRequest:
        return dataclasses.replace(self, headers=dict(headers))


@dataclasses.dataclass(frozen=True)
class HttpResponse:
    status: int
    text: str
    headers: Mapping[str, str] = dataclasses.field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decoded body; an empty body decodes to ``{}``."""
        if not self.text.strip():
            return {}
        return json.loads(self.text)

    def json_or_none(self) -> Any | None:
        """Decoded body, or ``None`` when it is not JSON."""
        try:
            return self.json()
        except ValueError:
            return None


class Transport(Protocol):
    """Structural transport interface used by the request pipeline.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`HttpTransport`) concrete.
    Implementations return every HTTP response (any status) and raise
    :class:`BridgeCoreNetworkError` only when no response was received.
    """

    async def send(self, request: PreparedRequest) -> HttpResponse:
        ...


class HttpTransport:
    """aiohttp-backed transport."""

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self.timeout = timeout
        self._custom_headers: dict[str, str] = {}

    def set_custom_header(self, name: str, value: str | None) -> None:
        """Add a header to every request; ``None`` removes it."""
        if value is None:
            self._custom_headers.pop(name, None)
        else:
            self._custom_headers[name] = value

    def _build_headers(self, request: PreparedRequest) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": USER_AGENT,
        }
        headers.update(self._custom_headers)
        headers.update(request.headers)
        return headers

    async def send(self, request: PreparedRequest) -> HttpResponse:
        url = f"{self._base_url}{request.path}"
        data = json.dumps(request.body, separators=(",", ":")) if request.body is not None else None
        params = {k: str(v) for k, v in request.params.items()} if request.params else None

        _logger.debug("%s %s", request.method, url)

        try:
            async with self._http.request(
                request.method,
                url,
                data=data,
                params=params,
                headers=self._build_headers(request),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                text = await resp.text()
                return HttpResponse(status=resp.status, text=text, headers=dict(resp.headers))
        except TimeoutError as exc:
            raise BridgeCoreNetworkError(
                f"Timeout: {request.method} {request.path} took longer than {self.timeout}s",
                endpoint=request.path,
                method=request.method,
            ) from exc
        except aiohttp.ClientError as exc:
            raise BridgeCoreNetworkError(
                f"Connection error: {exc}",
                endpoint=request.path,
                method=request.method,
            ) from exc
