"""
Unit tests for CodeGateway.
"""
import asyncio
import time

import pytest
from unittest.mock import AsyncMock, MagicMock

from codegate.auth.store import InMemorySessionStore
from codegate.auth.token_manager import TokenLifecycleManager
from codegate.config.gateway import GatewayConfig
from codegate.exceptions import ErrorKind
from codegate.gateway import CodeGateway
from codegate.preflight import TRUNCATED_MESSAGE
from codegate.sandbox.base import SandboxConfig, SandboxLevel
from codegate.types import ExecutionState, Failure, Session, Success


def run(gateway, code, intent="test"):
    return asyncio.run(gateway.execute(code, intent))


@pytest.fixture
def events():
    return []


@pytest.fixture
def gateway(store, mock_api_client, inprocess_config, events):
    return CodeGateway(
        store,
        config=inprocess_config,
        event_sink=events.append,
        api_client=mock_api_client,
    )


def rejecting_probe():
    response = MagicMock()
    response.status_code = 401
    response.text = "Invalid Credentials"
    return response


class TestSuccessfulExecution:
    def test_profile_read(self, gateway, mock_api_client):
        mock_api_client.get.return_value = {"emailAddress": "me@example.com", "messagesTotal": 42}

        result = run(gateway, "p = await read('/profile')\nreturn {'total': p['messagesTotal']}")

        assert isinstance(result, Success)
        assert result.value == {"total": 42}
        assert result.calls_used == 1
        mock_api_client.get.assert_called_once_with("access-1", "/profile")

    def test_output_is_returned(self, gateway):
        result = run(gateway, "print('hello')\nreturn None")
        assert result.ok
        assert result.output == ["hello"]
        assert result.calls_used == 0

    def test_list_size_clamped(self, gateway, mock_api_client):
        run(gateway, "return await read('/messages?q=is:unread&maxResults=500')")
        mock_api_client.get.assert_called_once_with(
            "access-1", "/messages?q=is:unread&maxResults=100"
        )

    def test_large_payload_sanitized(self, gateway, mock_api_client):
        mock_api_client.get.return_value = {"messages": [{"id": str(i)} for i in range(250)]}

        result = run(gateway, "return await read('/messages')")

        assert len(result.value["messages"]) == 100
        assert result.value["_truncated_messages"] == 250

    def test_state_history(self, gateway):
        run(gateway, "return 1")
        assert gateway.state_history == [
            ExecutionState.IDLE,
            ExecutionState.VALIDATING_CREDENTIAL,
            ExecutionState.PREFLIGHTING_CODE,
            ExecutionState.EXECUTING,
            ExecutionState.SUCCEEDED,
        ]
        assert gateway.state.terminal

    def test_events(self, gateway, events, mock_api_client):
        run(gateway, "return await read('/profile')", intent="check profile")

        names = [e["event"] for e in events]
        assert names == ["execution_started", "execution_result"]
        started, finished = events
        assert started["intent"] == "check profile"
        assert started["api_paths"] == ["/profile"]
        assert started["accounts"] == ["me@example.com"]
        assert finished["ok"] is True
        assert finished["calls_used"] == 1
        assert finished["duration_ms"] >= 0
        for event in events:
            assert "access-1" not in str(event)

    def test_failing_event_sink_is_ignored(self, store, mock_api_client, inprocess_config):
        sink = MagicMock(side_effect=RuntimeError("sink down"))
        gateway = CodeGateway(
            store, config=inprocess_config, event_sink=sink, api_client=mock_api_client
        )
        assert run(gateway, "return 1").ok
        assert sink.call_count == 2


class TestQuota:
    def test_call_cap(self, gateway, mock_api_client):
        code = "for i in range(11):\n    await read('/messages/' + str(i))\nreturn 'done'"

        result = run(gateway, code)

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.EXECUTION_ERROR
        assert "API call limit" in result.message
        assert result.meta["calls_used"] == 10
        assert result.meta["code"] == code
        assert mock_api_client.get.call_count == 10

    def test_call_cap_under_fan_out(self, store, mock_api_client):
        config = GatewayConfig(
            max_calls=3, sandbox=SandboxConfig(level=SandboxLevel.INPROCESS, timeout=5.0)
        )
        gateway = CodeGateway(store, config=config, api_client=mock_api_client)

        result = run(gateway, "return await gather(*[read('/m/' + str(i)) for i in range(6)])")

        assert not result.ok
        assert result.meta["calls_used"] == 3
        assert mock_api_client.get.call_count <= 3

    def test_quota_is_per_execution(self, gateway, mock_api_client):
        code = "for i in range(10):\n    await read('/m/' + str(i))\nreturn 1"
        assert run(gateway, code).ok
        assert run(gateway, code).ok


class TestFailures:
    def test_api_error_meta(self, gateway, mock_api_client):
        from codegate.exceptions import ApiError

        mock_api_client.get.side_effect = ApiError(404, "/messages/x", "Requested entity was not found.")

        result = run(gateway, "return await read('/messages/x')")

        assert result.kind == ErrorKind.API_ERROR
        assert result.meta["status_code"] == 404
        assert result.meta["calls_used"] == 1

    def test_script_error_line(self, gateway):
        result = run(gateway, "x = {}\nreturn x['missing']")
        assert result.kind == ErrorKind.EXECUTION_ERROR
        assert result.message == "KeyError: 'missing'"
        assert result.meta["line"] == 2

    def test_timeout(self, store, mock_api_client):
        mock_api_client.get.side_effect = lambda *args: time.sleep(1.0)
        config = GatewayConfig(sandbox=SandboxConfig(level=SandboxLevel.INPROCESS, timeout=0.3))
        gateway = CodeGateway(store, config=config, api_client=mock_api_client)

        result = run(gateway, "return await read('/slow')")

        assert result.kind == ErrorKind.TIMEOUT
        assert result.meta["duration_ms"] >= 300
        assert gateway.state == ExecutionState.FAILED


class TestPreflight:
    def test_truncated_code_never_runs(self, store, mock_api_client, inprocess_config, events):
        executor = MagicMock()
        executor.run = AsyncMock()
        gateway = CodeGateway(
            store,
            config=inprocess_config,
            event_sink=events.append,
            api_client=mock_api_client,
            executor=executor,
        )

        result = run(gateway, "items = await read('/messages')\nreturn [m['id'] for m in")

        assert result.kind == ErrorKind.EXECUTION_ERROR
        assert result.message == TRUNCATED_MESSAGE
        executor.run.assert_not_awaited()
        assert [e["event"] for e in events] == ["preflight_rejected"]
        assert events[0]["reason"] == TRUNCATED_MESSAGE
        assert ExecutionState.EXECUTING not in gateway.state_history

    def test_import_rejected(self, gateway, mock_api_client):
        result = run(gateway, "import os\nreturn os.environ")
        assert result.kind == ErrorKind.EXECUTION_ERROR
        assert "Imports" in result.message
        mock_api_client.get.assert_not_called()

    def test_self_invoking_wrapper_accepted(self, gateway):
        code = "async def main():\n    return 7\nawait main()"
        assert run(gateway, code).value == 7


class TestCredentials:
    def test_refresh_on_401(self, store, mock_api_client, mock_oauth_client, inprocess_config, events):
        mock_api_client.probe.return_value = rejecting_probe()
        manager = TokenLifecycleManager(store, mock_api_client, mock_oauth_client)
        gateway = CodeGateway(
            store,
            config=inprocess_config,
            event_sink=events.append,
            api_client=mock_api_client,
            token_manager=manager,
        )

        result = run(gateway, "return await read('/profile')")

        assert result.ok
        assert store.get("me@example.com").access_token == "access-2"
        mock_api_client.get.assert_called_once_with("access-2", "/profile")
        assert events[0] == {
            "event": "token_refreshed",
            "session_id": "default",
            "account": "me@example.com",
        }
        assert gateway.state_history[:4] == [
            ExecutionState.IDLE,
            ExecutionState.VALIDATING_CREDENTIAL,
            ExecutionState.REFRESHING_CREDENTIAL,
            ExecutionState.VALIDATING_CREDENTIAL,
        ]

    def test_no_refresh_token(self, mock_api_client, mock_oauth_client, inprocess_config):
        store = InMemorySessionStore([Session(account_id="me@example.com", access_token="stale")])
        mock_api_client.probe.return_value = rejecting_probe()
        manager = TokenLifecycleManager(store, mock_api_client, mock_oauth_client)
        gateway = CodeGateway(
            store, config=inprocess_config, api_client=mock_api_client, token_manager=manager
        )

        result = run(gateway, "return 1")

        assert result.kind == ErrorKind.SESSION_EXPIRED
        mock_oauth_client.refresh.assert_not_called()
        assert ExecutionState.PREFLIGHTING_CODE not in gateway.state_history

    def test_no_accounts(self, mock_api_client, inprocess_config):
        gateway = CodeGateway(
            InMemorySessionStore(), config=inprocess_config, api_client=mock_api_client
        )
        result = run(gateway, "return 1")
        assert result.kind == ErrorKind.SESSION_EXPIRED
        assert "No connected mail account" in result.message

    def test_failing_account_is_skipped(self, session, mock_api_client, inprocess_config, ok_probe):
        other = Session(account_id="old@example.com", access_token="dead")
        store = InMemorySessionStore([other, session])
        mock_api_client.probe.side_effect = (
            lambda token, path: rejecting_probe() if token == "dead" else ok_probe
        )
        gateway = CodeGateway(store, config=inprocess_config, api_client=mock_api_client)

        result = run(gateway, "return await read('/profile')")

        assert result.ok
        mock_api_client.get.assert_called_once_with("access-1", "/profile")

    def test_named_account(self, session, mock_api_client, inprocess_config):
        work = Session(account_id="work@example.com", access_token="work-token", account_label="Work")
        store = InMemorySessionStore([session, work])
        gateway = CodeGateway(store, config=inprocess_config, api_client=mock_api_client)

        result = run(gateway, "return await read('/profile', account='work')")

        assert result.ok
        mock_api_client.get.assert_called_once_with("work-token", "/profile")

    def test_unknown_account(self, session, mock_api_client, inprocess_config):
        work = Session(account_id="work@example.com", access_token="work-token")
        store = InMemorySessionStore([session, work])
        gateway = CodeGateway(store, config=inprocess_config, api_client=mock_api_client)

        result = run(gateway, "return await read('/profile', account='nobody@example.com')")
        assert result.kind == ErrorKind.EXECUTION_ERROR
        assert "not found" in result.message
