"""
Unified exception handling for API routes.

Failures inside an execution come back as a normal response with ``ok``
false; this decorator only handles errors that prevent a route from
producing one.
"""
import functools
import logging
from typing import Callable, TypeVar

from fastapi import HTTPException

from codegate.exceptions import CodegateError, GatewayNotInitializedError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


def handle_route_exceptions(func: F) -> F:
    """
    Decorator that maps codegate exceptions to HTTP status codes:
    - 503: GatewayNotInitializedError (service unavailable)
    - 400: ValueError (invalid input)
    - 500: All other exceptions

    HTTPException instances are re-raised as-is.

    Usage:
        @router.post("/my_endpoint")
        @handle_route_exceptions
        async def my_endpoint():
            ...
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except GatewayNotInitializedError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except HTTPException:
            raise
        except CodegateError as e:
            raise HTTPException(status_code=500, detail=str(e))
        except Exception as e:
            logger.exception(f"Unhandled error in {func.__name__}")
            raise HTTPException(status_code=500, detail=f"{type(e).__name__}: {e}")

    return wrapper
