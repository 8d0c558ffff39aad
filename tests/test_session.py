from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pybridgecore.session import SessionTokens
from pybridgecore.token_store import InMemoryTokenStore, get_access_token, get_refresh_token


def test_from_response_sets_expiries() -> None:
    tokens = SessionTokens.from_response(access_token="a", refresh_token="r", expires_in=1800)

    assert tokens.access_expires_at is not None
    assert tokens.refresh_expires_at is not None
    assert tokens.refresh_expires_at - tokens.saved_at == timedelta(days=30)
    assert not tokens.is_access_expired
    assert tokens.has_valid_session


def test_access_expiry_uses_skew() -> None:
    tokens = SessionTokens.from_response(access_token="a", refresh_token="r", expires_in=10)

    assert tokens.is_access_expired
    assert tokens.has_valid_session


def test_fully_expired_session() -> None:
    past = datetime.now(UTC) - timedelta(minutes=1)
    tokens = SessionTokens(access_token="a", refresh_token="r", access_expires_at=past, refresh_expires_at=past)

    assert tokens.is_access_expired
    assert tokens.is_refresh_expired
    assert not tokens.has_valid_session


def test_with_access_token_keeps_refresh_token() -> None:
    tokens = SessionTokens.from_response(access_token="a", refresh_token="r")

    rotated = tokens.with_access_token("a2", expires_in=60)
    assert rotated.access_token == "a2"
    assert rotated.refresh_token == "r"
    assert rotated.refresh_expires_at == tokens.refresh_expires_at
    assert tokens.with_access_token("a3", refresh_token="r2").refresh_token == "r2"


def test_describe_hides_secrets() -> None:
    info = SessionTokens.from_response(access_token="secret-a", refresh_token="secret-r", expires_in=60).describe()

    assert info["has_tokens"] is True
    assert 0 < info["access_expires_in_seconds"] <= 60
    assert "secret-a" not in str(info)
    assert "secret-r" not in str(info)


@pytest.mark.asyncio
async def test_in_memory_store_saves_and_clears_both_tokens() -> None:
    store = InMemoryTokenStore()
    assert await get_access_token(store) is None

    await store.save_tokens(SessionTokens.from_response(access_token="a", refresh_token="r"))
    assert await get_access_token(store) == "a"
    assert await get_refresh_token(store) == "r"

    await store.clear_tokens()
    assert await store.get_tokens() is None
    assert await get_refresh_token(store) is None
