"""
The capability surface: the only way a script reaches the outside world.

A script sees two verbs, ``read(path, account=None)`` and
``write(path, body, account=None)``. Each call resolves an account, claims
one unit of the execution's quota, clamps list sizes, performs the request
on the host with the account's bearer token and returns the sanitized
payload. The token itself never enters the sandbox.
"""
import asyncio
import functools
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from codegate.capabilities.accounts import resolve_account
from codegate.capabilities.quota import CallQuota
from codegate.capabilities.sanitize import ResponseSanitizer, clamp_list_params
from codegate.client.mail import MailApiClient
from codegate.exceptions import ApiError, ExecutionError
from codegate.observability import record_api_call
from codegate.types import AccountToken

logger = logging.getLogger(__name__)

VERBS = ("read", "write")


def normalize_path(path: Any) -> str:
    if not isinstance(path, str) or not path.strip():
        raise ExecutionError(f"path must be a non-empty string, got {type(path).__name__}")
    path = path.strip()
    return path if path.startswith("/") else f"/{path}"


class CapabilitySurface:
    """Metered, sanitizing proxy bound to one execution.

    Args:
        client: Client for the remote API.
        accounts: Validated credentials, first one is the default.
        quota: The execution's call quota. Shared by both verbs.
        sanitizer: Applied to every response before it is returned.
        list_params: Query parameters clamped to the sanitizer's list cap.
    """

    def __init__(
        self,
        client: MailApiClient,
        accounts: List[AccountToken],
        quota: CallQuota,
        sanitizer: ResponseSanitizer,
        list_params: Sequence[str] = ("maxResults",),
    ):
        self.client = client
        self.accounts = list(accounts)
        self.quota = quota
        self.sanitizer = sanitizer
        self.list_params = tuple(list_params)

    @property
    def calls_used(self) -> int:
        return self.quota.used

    @property
    def account_ids(self) -> List[str]:
        return [a.email for a in self.accounts]

    async def read(self, path: str, account: Optional[str] = None) -> Any:
        """GET ``path`` relative to the API base."""
        return await self._call("read", path, None, account)

    async def write(self, path: str, body: Any = None, account: Optional[str] = None) -> Any:
        """POST ``body`` as JSON to ``path`` relative to the API base."""
        return await self._call("write", path, body, account)

    async def dispatch(self, verb: str, args: Dict[str, Any]) -> Any:
        """Invoke a verb by name; used by sandboxes that forward calls."""
        if verb not in VERBS:
            raise ExecutionError(f"Unknown capability: {verb!r}")
        return await self._call(verb, args.get("path"), args.get("body"), args.get("account"))

    async def _call(self, verb: str, path: Any, body: Any, account: Optional[str]) -> Any:
        path = normalize_path(path)
        if body is not None:
            try:
                json.dumps(body)
            except (TypeError, ValueError) as e:
                raise ExecutionError(f"write() body is not JSON-serializable: {e}") from None
        if account is not None and not isinstance(account, str):
            raise ExecutionError("account must be a string")

        token = resolve_account(self.accounts, account)
        call_index = self.quota.acquire()
        path = clamp_list_params(path, self.list_params, self.sanitizer.max_list_items)
        logger.info(f"{verb} {path} as {token.email} ({call_index}/{self.quota.limit})")

        if verb == "read":
            request = functools.partial(self.client.get, token.token, path)
        else:
            request = functools.partial(self.client.post, token.token, path, body)

        loop = asyncio.get_running_loop()
        try:
            payload = await loop.run_in_executor(None, request)
        except ApiError as e:
            record_api_call(verb, e.status_code)
            raise
        record_api_call(verb, 200)
        return self.sanitizer.sanitize(payload)
