"""
Shared test fixtures for codegate tests.
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from codegate.auth.store import InMemorySessionStore
from codegate.config.gateway import GatewayConfig
from codegate.sandbox.base import SandboxConfig, SandboxLevel
from codegate.types import AccountToken, Session


class FakeSurface:
    """Capability surface stand-in that answers from a dict of paths."""

    def __init__(self, responses=None, error=None, delay=0.0):
        self.responses = responses or {}
        self.error = error
        self.delay = delay
        self.calls = []

    async def read(self, path, account=None):
        self.calls.append(("read", path, account))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.responses.get(path, {})

    async def write(self, path, body=None, account=None):
        self.calls.append(("write", path, account))
        if self.error is not None:
            raise self.error
        return {"written": body}

    async def dispatch(self, verb, args):
        if verb == "read":
            return await self.read(args.get("path"), args.get("account"))
        return await self.write(args.get("path"), args.get("body"), args.get("account"))


@pytest.fixture
def session():
    return Session(
        account_id="me@example.com",
        access_token="access-1",
        refresh_token="refresh-1",
        client_id="client-id",
        client_secret="client-secret",
        account_label="personal",
    )


@pytest.fixture
def store(session):
    return InMemorySessionStore([session])


@pytest.fixture
def account_token():
    return AccountToken(email="me@example.com", token="access-1", label="personal")


@pytest.fixture
def ok_probe():
    response = MagicMock()
    response.status_code = 200
    response.text = '{"emailAddress": "me@example.com"}'
    return response


@pytest.fixture
def mock_api_client(ok_probe):
    client = MagicMock()
    client.error_excerpt_chars = 500
    client.probe.return_value = ok_probe
    client.get.return_value = {}
    client.post.return_value = {}
    return client


@pytest.fixture
def mock_oauth_client():
    client = MagicMock()
    client.refresh.return_value = {"access_token": "access-2", "expires_in": 3599}
    return client


@pytest.fixture
def inprocess_config():
    return GatewayConfig(sandbox=SandboxConfig(level=SandboxLevel.INPROCESS, timeout=5.0))


@pytest.fixture
def fake_surface():
    return FakeSurface(responses={"/profile": {"emailAddress": "me@example.com"}})


@pytest.fixture
def make_surface():
    return FakeSurface
