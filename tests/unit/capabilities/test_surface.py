"""
Unit tests for the capability surface, call quota and account resolution.
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from codegate.capabilities import (
    CallQuota,
    CapabilitySurface,
    ResponseSanitizer,
    normalize_path,
    resolve_account,
)
from codegate.exceptions import (
    AccountNotFoundError,
    ApiError,
    ExecutionError,
    QuotaExceededError,
)
from codegate.types import AccountToken


@pytest.fixture
def accounts():
    return [
        AccountToken(email="me@example.com", token="token-me", label="personal"),
        AccountToken(email="boss@work.example", token="token-work", label="work"),
    ]


@pytest.fixture
def client():
    client = MagicMock()
    client.get.return_value = {"emailAddress": "me@example.com"}
    client.post.return_value = {"id": "sent-1"}
    return client


def make_surface(client, accounts, limit=10):
    return CapabilitySurface(
        client,
        accounts,
        CallQuota(limit),
        ResponseSanitizer(max_string_chars=3000, max_list_items=100),
    )


class TestCallQuota:
    def test_acquire_counts(self):
        quota = CallQuota(2)
        assert quota.acquire() == 1
        assert quota.acquire() == 2
        assert quota.used == 2
        assert quota.remaining == 0

    def test_acquire_over_limit(self):
        quota = CallQuota(1)
        quota.acquire()
        with pytest.raises(QuotaExceededError) as exc_info:
            quota.acquire()
        assert exc_info.value.limit == 1
        assert exc_info.value.attempted == 2
        assert quota.used == 1

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            CallQuota(0)


class TestResolveAccount:
    def test_single_account_ignores_argument(self, accounts):
        assert resolve_account(accounts[:1], "anything").email == "me@example.com"

    def test_default_is_first(self, accounts):
        assert resolve_account(accounts).email == "me@example.com"

    def test_by_email(self, accounts):
        assert resolve_account(accounts, "BOSS@work.example").token == "token-work"

    def test_by_label(self, accounts):
        assert resolve_account(accounts, "work").token == "token-work"

    def test_unknown(self, accounts):
        with pytest.raises(AccountNotFoundError) as exc_info:
            resolve_account(accounts, "nobody")
        assert "boss@work.example (work)" in exc_info.value.message

    def test_no_accounts(self):
        with pytest.raises(ExecutionError, match="No mail accounts"):
            resolve_account([])


class TestNormalizePath:
    def test_adds_leading_slash(self):
        assert normalize_path("profile") == "/profile"

    def test_keeps_leading_slash(self):
        assert normalize_path("/profile") == "/profile"

    def test_rejects_non_string(self):
        with pytest.raises(ExecutionError):
            normalize_path(42)


class TestCapabilitySurface:
    def test_read(self, client, accounts):
        surface = make_surface(client, accounts)
        result = asyncio.run(surface.read("profile"))
        assert result == {"emailAddress": "me@example.com"}
        client.get.assert_called_once_with("token-me", "/profile")
        assert surface.calls_used == 1

    def test_write(self, client, accounts):
        surface = make_surface(client, accounts)
        body = {"raw": "abc"}
        result = asyncio.run(surface.write("/messages/send", body, account="work"))
        assert result == {"id": "sent-1"}
        client.post.assert_called_once_with("token-work", "/messages/send", body)

    def test_list_param_clamped(self, client, accounts):
        surface = make_surface(client, accounts)
        asyncio.run(surface.read("/messages?maxResults=500"))
        client.get.assert_called_once_with("token-me", "/messages?maxResults=100")

    def test_response_sanitized(self, client, accounts):
        client.get.return_value = {"messages": [{"id": str(i)} for i in range(150)]}
        surface = make_surface(client, accounts)
        result = asyncio.run(surface.read("/messages"))
        assert len(result["messages"]) == 100
        assert result["_truncated_messages"] == 150

    def test_quota_blocks_network(self, client, accounts):
        surface = make_surface(client, accounts, limit=2)

        async def script():
            await surface.read("/a")
            await surface.read("/b")
            await surface.read("/c")

        with pytest.raises(QuotaExceededError):
            asyncio.run(script())
        assert client.get.call_count == 2

    def test_fan_out_cannot_bypass_quota(self, client, accounts):
        surface = make_surface(client, accounts, limit=3)

        async def script():
            return await asyncio.gather(
                *[surface.read(f"/messages/{i}") for i in range(5)],
                return_exceptions=True,
            )

        results = asyncio.run(script())
        errors = [r for r in results if isinstance(r, QuotaExceededError)]
        assert len(errors) == 2
        assert client.get.call_count == 3
        assert surface.calls_used == 3

    def test_api_error_propagates(self, client, accounts):
        client.get.side_effect = ApiError(404, "/messages/x", "Not Found")
        surface = make_surface(client, accounts)
        with pytest.raises(ApiError) as exc_info:
            asyncio.run(surface.read("/messages/x"))
        assert exc_info.value.status_code == 404

    def test_unknown_account_consumes_no_quota(self, client, accounts):
        surface = make_surface(client, accounts)
        with pytest.raises(AccountNotFoundError):
            asyncio.run(surface.read("/profile", account="nobody"))
        assert surface.calls_used == 0
        client.get.assert_not_called()

    def test_unserializable_body(self, client, accounts):
        surface = make_surface(client, accounts)
        with pytest.raises(ExecutionError, match="JSON-serializable"):
            asyncio.run(surface.write("/messages/send", {"when": object()}))
        assert surface.calls_used == 0

    def test_dispatch(self, client, accounts):
        surface = make_surface(client, accounts)
        asyncio.run(surface.dispatch("read", {"path": "/labels"}))
        client.get.assert_called_once_with("token-me", "/labels")

    def test_dispatch_unknown_verb(self, client, accounts):
        surface = make_surface(client, accounts)
        with pytest.raises(ExecutionError, match="Unknown capability"):
            asyncio.run(surface.dispatch("delete", {"path": "/x"}))
