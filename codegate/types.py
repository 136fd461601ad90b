"""
Core data types shared across the gateway.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from codegate.exceptions import ErrorKind


@dataclass
class Session:
    """Persisted credential record for one connected account.

    Only the TokenLifecycleManager writes to a Session, and only after a
    successful refresh.
    """
    account_id: str
    access_token: str
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    account_label: Optional[str] = None

    def with_access_token(self, access_token: str, refresh_token: Optional[str] = None) -> "Session":
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "account_label": self.account_label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            account_id=data["account_id"],
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            client_id=data.get("client_id"),
            client_secret=data.get("client_secret"),
            account_label=data.get("account_label"),
        )

    def __repr__(self) -> str:
        return f"Session(account_id={self.account_id!r}, account_label={self.account_label!r})"


@dataclass(frozen=True)
class AccountToken:
    """A validated bearer token for one account."""
    email: str
    token: str
    label: Optional[str] = None

    def __repr__(self) -> str:
        return f"AccountToken(email={self.email!r}, label={self.label!r})"


@dataclass(frozen=True)
class ExecutionRequest:
    code: str
    intent: str


@dataclass(frozen=True)
class Success:
    value: Any
    output: List[str] = field(default_factory=list)
    calls_used: int = 0

    ok = True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    meta: Dict[str, Any] = field(default_factory=dict)

    ok = False


ExecutionResult = Union[Success, Failure]


@dataclass(frozen=True)
class ErrorView:
    """Fixed title/detail/hint triple a presentation layer renders."""
    title: str
    detail: str
    hint: str


class ExecutionState(str, Enum):
    IDLE = "idle"
    VALIDATING_CREDENTIAL = "validating_credential"
    REFRESHING_CREDENTIAL = "refreshing_credential"
    PREFLIGHTING_CODE = "preflighting_code"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionState.SUCCEEDED, ExecutionState.FAILED)


def result_to_dict(result: ExecutionResult) -> Dict[str, Any]:
    if isinstance(result, Success):
        return {
            "ok": True,
            "value": result.value,
            "output": list(result.output),
            "calls_used": result.calls_used,
        }
    return {
        "ok": False,
        "kind": result.kind.value,
        "message": result.message,
        "meta": dict(result.meta),
    }
