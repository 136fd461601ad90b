"""
Centralized configuration defaults for codegate.

This module provides a single source of truth for all default configurations
used across the gateway. Quota and size caps are policy constants: override
them through GatewayConfig rather than editing these values.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Tuple

# Import enums from their canonical locations
from codegate.sandbox.base import SandboxLevel


@dataclass(frozen=True)
class ApiDefaults:
    """Default remote API endpoints."""
    api_base: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    token_endpoint: str = "https://oauth2.googleapis.com/token"
    probe_path: str = "/profile"
    request_timeout: float = 20.0  # seconds per HTTP request
    error_excerpt_chars: int = 500


@dataclass(frozen=True)
class GovernorDefaults:
    """Default quota and response-size caps."""
    max_calls: int = 10  # per execution
    max_string_chars: int = 3000  # S1
    max_body_chars: int = 3000  # S2, never above S1
    max_list_items: int = 100  # L1
    list_params: Tuple[str, ...] = ("maxResults",)
    keep_headers: FrozenSet[str] = field(default_factory=lambda: frozenset({
        "subject",
        "from",
        "to",
        "cc",
        "bcc",
        "date",
        "message-id",
        "in-reply-to",
        "references",
    }))


@dataclass(frozen=True)
class SandboxDefaults:
    """Default sandbox configuration."""
    level: SandboxLevel = SandboxLevel.SUBPROCESS
    timeout: float = 30.0  # seconds
    max_memory_mb: int = 512
    max_cpu_time: int = 30  # seconds
    max_output_chars: int = 10000


@dataclass(frozen=True)
class ServerDefaults:
    """Default server configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


# Global default instances
API_DEFAULTS = ApiDefaults()
GOVERNOR_DEFAULTS = GovernorDefaults()
SANDBOX_DEFAULTS = SandboxDefaults()
SERVER_DEFAULTS = ServerDefaults()

