"""
Shared dependencies for API routes.

This module provides the gateway access pattern used by all route modules.
"""
from typing import Optional

from codegate.exceptions import GatewayNotInitializedError

_gateway: Optional["CodeGateway"] = None


def set_gateway(gateway: Optional["CodeGateway"]) -> None:
    """
    Set the global gateway instance.

    This should be called once during application startup from server.py.
    Passing None clears it.
    """
    global _gateway
    _gateway = gateway


def get_gateway() -> "CodeGateway":
    """
    Get the global gateway instance.

    Raises:
        GatewayNotInitializedError: If the gateway has not been set.
    """
    if _gateway is None:
        raise GatewayNotInitializedError()
    return _gateway
