"""Token storage used by the request pipeline.

The storage backend is owned by the application (keychain, encrypted file,
...). pybridgecore only needs the small async interface described by
:class:`TokenStore`; :class:`InMemoryTokenStore` is the default.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pybridgecore.session import SessionTokens

_logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    """Async key-value storage for the access/refresh token pair.

    Both tokens are written together and cleared together.
    """

    async def get_tokens(self) -> SessionTokens | None:
        ...

    async def save_tokens(self, tokens: SessionTokens) -> None:
        ...

    async def clear_tokens(self) -> None:
        ...


class InMemoryTokenStore:
    """Process-local token storage."""

    def __init__(self, tokens: SessionTokens | None = None) -> None:
        self._tokens = tokens

    async def get_tokens(self) -> SessionTokens | None:
        return self._tokens

    async def save_tokens(self, tokens: SessionTokens) -> None:
        _logger.debug("Saving session tokens")
        self._tokens = tokens

    async def clear_tokens(self) -> None:
        _logger.debug("Clearing session tokens")
        self._tokens = None


async def get_access_token(store: TokenStore) -> str | None:
    tokens = await store.get_tokens()
    return tokens.access_token if tokens is not None and tokens.access_token else None


async def get_refresh_token(store: TokenStore) -> str | None:
    tokens = await store.get_tokens()
    return tokens.refresh_token if tokens is not None and tokens.refresh_token else None
