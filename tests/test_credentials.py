"""Tests for the ordered bearer-token credential chain."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from calendar_tools.credentials import (
    ACCESS_TOKEN_ENV,
    CookieCredentialSource,
    CredentialChain,
    EnvCredentialSource,
    InjectedCredentialSource,
    StorageCredentialSource,
)
from calendar_tools.errors import CredentialMissing

pytestmark = pytest.mark.unit

LONG_TOKEN = "ya29.a0AfH6SMBx-long-enough-token"


class TestStorageSource:
    async def test_bare_token(self):
        source = StorageCredentialSource({"auth_token": "abc"})
        assert await source.get_token() == "abc"

    async def test_json_object_with_access_token(self):
        source = StorageCredentialSource(
            {"google_auth_token": json.dumps({"access_token": "from-json", "expires_in": 3600})}
        )
        assert await source.get_token() == "from-json"

    async def test_json_object_with_token_key(self):
        source = StorageCredentialSource({"access_token": json.dumps({"token": "t-1"})})
        assert await source.get_token() == "t-1"

    async def test_json_object_without_token_moves_to_next_key(self):
        source = StorageCredentialSource(
            {"google_auth_token": json.dumps({"scope": "x"}), "access_token": "second"}
        )
        assert await source.get_token() == "second"

    async def test_key_order_is_respected(self):
        source = StorageCredentialSource({"access_token": "later", "google_auth_token": "first"})
        assert await source.get_token() == "first"

    async def test_empty_storage(self):
        assert await StorageCredentialSource({}).get_token() is None
        assert await StorageCredentialSource({"auth_token": "   "}).get_token() is None


class TestCookieSource:
    async def test_long_auth_cookie_is_used(self):
        source = CookieCredentialSource.from_header(
            f"theme=dark; session_auth={LONG_TOKEN}; other=1"
        )
        assert await source.get_token() == LONG_TOKEN

    async def test_short_or_unrelated_cookies_are_ignored(self):
        source = CookieCredentialSource.from_header(f"auth=short; prefs={LONG_TOKEN}")
        assert await source.get_token() is None

    async def test_value_is_url_decoded(self):
        source = CookieCredentialSource({"Access_Token": "abc%2Fdef%3D%3Dlong-enough-value"})
        assert await source.get_token() == "abc/def==long-enough-value"


class TestInjectedSource:
    async def test_sync_provider(self):
        assert await InjectedCredentialSource(lambda: "sync-token").get_token() == "sync-token"

    async def test_async_provider(self):
        provider = AsyncMock(return_value="async-token")
        assert await InjectedCredentialSource(provider).get_token() == "async-token"

    async def test_failing_provider_yields_none(self):
        provider = MagicMock(side_effect=RuntimeError("not signed in"))
        assert await InjectedCredentialSource(provider).get_token() is None

    async def test_empty_token_yields_none(self):
        assert await InjectedCredentialSource(lambda: "").get_token() is None


class TestEnvSource:
    async def test_reads_variable(self):
        source = EnvCredentialSource({ACCESS_TOKEN_ENV: "  env-token "})
        assert await source.get_token() == "env-token"

    async def test_missing_variable(self):
        assert await EnvCredentialSource({}).get_token() is None


class TestCredentialChain:
    async def test_first_usable_source_wins(self):
        chain = CredentialChain(
            [
                StorageCredentialSource({}, name="localStorage"),
                StorageCredentialSource({"auth_token": "session"}, name="sessionStorage"),
                InjectedCredentialSource(lambda: "injected"),
            ]
        )
        assert await chain.resolve() == "session"

    async def test_later_sources_not_consulted_after_a_hit(self):
        provider = MagicMock(return_value="injected")
        chain = CredentialChain(
            [StorageCredentialSource({"auth_token": "stored"}), InjectedCredentialSource(provider)]
        )
        assert await chain.require() == "stored"
        provider.assert_not_called()

    async def test_require_raises_when_nothing_found(self):
        chain = CredentialChain(
            [StorageCredentialSource({}, name="localStorage"), EnvCredentialSource({})]
        )
        assert await chain.resolve() is None
        with pytest.raises(CredentialMissing, match="localStorage, env"):
            await chain.require()

    async def test_empty_chain(self):
        with pytest.raises(CredentialMissing, match="none"):
            await CredentialChain([]).require()
