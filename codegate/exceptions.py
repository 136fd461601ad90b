"""
Closed error taxonomy for codegate.

Every failure the gateway reports belongs to one of four kinds: ApiError,
ExecutionError, SessionExpiredError or TimeoutError.
"""
from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(str, Enum):
    """The closed set of failure kinds reported to callers."""
    API_ERROR = "ApiError"
    EXECUTION_ERROR = "ExecutionError"
    SESSION_EXPIRED = "SessionExpiredError"
    TIMEOUT = "TimeoutError"


class CodegateError(Exception):
    """Base exception for all codegate errors."""

    kind: ErrorKind = ErrorKind.EXECUTION_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.details}


class ApiError(CodegateError):
    """The remote API answered with a non-2xx status (or could not be reached)."""

    kind = ErrorKind.API_ERROR

    def __init__(self, status_code: int, endpoint: str, message: str):
        super().__init__(
            message,
            {"status_code": status_code, "endpoint": endpoint},
        )
        self.status_code = status_code
        self.endpoint = endpoint

    def __str__(self) -> str:
        return f"API {self.status_code} on {self.endpoint}: {self.message}"


class ExecutionError(CodegateError):
    """Submitted code failed validation or raised while running."""

    kind = ErrorKind.EXECUTION_ERROR

    def __init__(self, message: str, code: str = "", line: Optional[int] = None):
        details: Dict[str, Any] = {"code": code}
        if line is not None:
            details["line"] = line
        super().__init__(message, details)
        self.code = code
        self.line = line

    def __str__(self) -> str:
        if self.line is not None:
            return f"{self.message} (line {self.line})"
        return self.message


class QuotaExceededError(ExecutionError):
    """Raised when a script issues more remote calls than one execution allows."""

    def __init__(self, limit: int, attempted: int, code: str = ""):
        super().__init__(
            f"API call limit exceeded (max {limit} per execution). "
            "Use batch endpoints or split the work into separate executions.",
            code=code,
        )
        self.limit = limit
        self.attempted = attempted
        self.details["limit"] = limit
        self.details["attempted"] = attempted


class AccountNotFoundError(ExecutionError):
    """Raised when a script names an account that is not connected."""

    def __init__(self, account: Optional[str], available: list):
        if account is None:
            message = "No mail accounts available"
        else:
            message = f"Account {account!r} not found. Available: {', '.join(available)}"
        super().__init__(message)
        self.account = account
        self.available = list(available)
        self.details["available"] = self.available


class SessionExpiredError(CodegateError):
    """The credential is unusable and could not be refreshed."""

    kind = ErrorKind.SESSION_EXPIRED

    def __init__(self, reason: str):
        super().__init__(reason, {"reason": reason})
        self.reason = reason

    def __str__(self) -> str:
        return self.reason


class TimeoutError(CodegateError):
    """Raised when an execution exceeds its wall-clock budget."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, duration_ms: int):
        super().__init__(
            f"Script execution timed out after {duration_ms}ms",
            {"duration_ms": duration_ms},
        )
        self.duration_ms = duration_ms


class GatewayNotInitializedError(CodegateError):
    def __init__(self):
        super().__init__("Gateway not initialized. Call set_gateway() first.")


def error_from_dict(data: Dict[str, Any]) -> CodegateError:
    """Rebuild a taxonomy error from its ``to_dict`` form.

    Used on the host side of the subprocess sandbox, where errors cross the
    process boundary as JSON.
    """
    kind = data.get("kind")
    message = data.get("message", "")
    if kind == ErrorKind.API_ERROR.value:
        return ApiError(int(data.get("status_code", 0)), data.get("endpoint", ""), message)
    if kind == ErrorKind.SESSION_EXPIRED.value:
        return SessionExpiredError(data.get("reason", message))
    if kind == ErrorKind.TIMEOUT.value:
        return TimeoutError(int(data.get("duration_ms", 0)))
    return ExecutionError(message, code=data.get("code", ""), line=data.get("line"))
