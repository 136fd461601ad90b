"""
Result classification: map every execution outcome into the closed result
type, and map failures onto the fixed presentation triple callers render.
"""
import logging
from typing import Any, List

from codegate.capabilities.sanitize import ResponseSanitizer
from codegate.exceptions import CodegateError, ErrorKind
from codegate.types import ErrorView, Failure, Success

logger = logging.getLogger(__name__)

DEFAULT_DETAIL = "Something went wrong while running your request."


def classify_success(
    value: Any,
    output: List[str],
    calls_used: int,
    sanitizer: ResponseSanitizer,
) -> Success:
    """Wrap a script's value, sanitizing it once more on the way out."""
    return Success(value=sanitizer.sanitize(value), output=list(output), calls_used=calls_used)


def classify_error(exc: BaseException) -> Failure:
    """Map a raised error onto the closed ErrorKind set.

    Anything outside the taxonomy becomes an ExecutionError carrying only
    the exception's type and message.
    """
    if isinstance(exc, CodegateError):
        return Failure(kind=exc.kind, message=exc.message, meta=dict(exc.details))
    logger.error(f"Unclassified error: {type(exc).__name__}: {exc}")
    return Failure(
        kind=ErrorKind.EXECUTION_ERROR,
        message=f"{type(exc).__name__}: {exc}",
    )


def _api_error_view(status_code: Any, detail: str) -> ErrorView:
    if status_code == 401:
        return ErrorView(
            "Mail authentication expired", detail, "Reconnect your mail account, then try again."
        )
    if status_code == 403:
        return ErrorView(
            "Mail permission denied", detail, "Reconnect with the required mail permissions."
        )
    if status_code == 404:
        return ErrorView(
            "Mail item not found", detail, "Confirm the email or thread still exists and try again."
        )
    if status_code == 429:
        return ErrorView(
            "Mail rate limit reached", detail, "Wait a moment and retry with a narrower request."
        )
    return ErrorView(
        "Mail API error", detail, "Try again in a moment. If this keeps happening, reconnect your account."
    )


def error_view(failure: Failure) -> ErrorView:
    """Return the title/detail/hint triple for a failure.

    Raises:
        ValueError: If the failure's kind is not part of ErrorKind.
    """
    detail = failure.message.strip() or DEFAULT_DETAIL
    kind = ErrorKind(failure.kind)

    if kind == ErrorKind.API_ERROR:
        return _api_error_view(failure.meta.get("status_code"), detail)
    elif kind == ErrorKind.EXECUTION_ERROR:
        return ErrorView(
            "Script execution failed",
            detail,
            "Try a simpler script or fix the code issue and run again.",
        )
    elif kind == ErrorKind.SESSION_EXPIRED:
        return ErrorView(
            "Session expired", detail, "Reconnect your mail account to continue."
        )
    elif kind == ErrorKind.TIMEOUT:
        return ErrorView(
            "Script timed out",
            detail,
            "Try a smaller query or fewer operations in one request.",
        )
    raise ValueError(f"Unhandled error kind: {kind}")
