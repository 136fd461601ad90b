"""
GatewayConfig: the policy knobs of one gateway instance.

Quota cap, string/body/list caps, the timeout and the remote endpoints are
policy, not semantics, so they all live here. Values that would break the
sanitization invariants are clamped in __post_init__.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, FrozenSet, Tuple

from codegate.config.defaults import API_DEFAULTS, GOVERNOR_DEFAULTS, SANDBOX_DEFAULTS
from codegate.sandbox.base import SandboxConfig

logger = logging.getLogger(__name__)


def _default_sandbox() -> SandboxConfig:
    return SandboxConfig(
        level=SANDBOX_DEFAULTS.level,
        timeout=SANDBOX_DEFAULTS.timeout,
        max_memory_mb=SANDBOX_DEFAULTS.max_memory_mb,
        max_cpu_time=SANDBOX_DEFAULTS.max_cpu_time,
        max_output_chars=SANDBOX_DEFAULTS.max_output_chars,
    )


@dataclass
class GatewayConfig:
    """Configuration for a CodeGateway.

    Attributes:
        api_base: Base URL every capability path is relative to.
        token_endpoint: OAuth token endpoint used for refresh.
        probe_path: Lightweight GET used to check a token.
        request_timeout: Per-request HTTP timeout in seconds.
        max_calls: Remote calls allowed per execution.
        max_string_chars: Cap S1 on any string in a sanitized payload.
        max_body_chars: Cap S2 on decoded body fields. Clamped to S1.
        max_list_items: Cap L1 on arrays and on list query parameters.
        list_params: Query parameters clamped to max_list_items.
        keep_headers: Header names kept when filtering header lists.
        sandbox: Isolation level, timeout and resource limits.

    Example:
        config = GatewayConfig(max_calls=5, sandbox=SandboxConfig(timeout=10))
        gateway = CodeGateway(store, ["me@example.com"], config=config)
    """
    api_base: str = API_DEFAULTS.api_base
    token_endpoint: str = API_DEFAULTS.token_endpoint
    probe_path: str = API_DEFAULTS.probe_path
    request_timeout: float = API_DEFAULTS.request_timeout
    error_excerpt_chars: int = API_DEFAULTS.error_excerpt_chars
    max_calls: int = GOVERNOR_DEFAULTS.max_calls
    max_string_chars: int = GOVERNOR_DEFAULTS.max_string_chars
    max_body_chars: int = GOVERNOR_DEFAULTS.max_body_chars
    max_list_items: int = GOVERNOR_DEFAULTS.max_list_items
    list_params: Tuple[str, ...] = GOVERNOR_DEFAULTS.list_params
    keep_headers: FrozenSet[str] = GOVERNOR_DEFAULTS.keep_headers
    sandbox: SandboxConfig = field(default_factory=_default_sandbox)

    def __post_init__(self):
        self.api_base = self.api_base.rstrip("/")
        if self.max_calls < 1:
            raise ValueError(f"max_calls must be at least 1, got {self.max_calls}")
        if self.max_string_chars < 1 or self.max_list_items < 1:
            raise ValueError("max_string_chars and max_list_items must be positive")
        if self.max_body_chars > self.max_string_chars:
            logger.warning(
                f"max_body_chars={self.max_body_chars} exceeds max_string_chars="
                f"{self.max_string_chars}; clamping"
            )
            self.max_body_chars = self.max_string_chars
        self.list_params = tuple(self.list_params)
        self.keep_headers = frozenset(h.lower() for h in self.keep_headers)
        if isinstance(self.sandbox, dict):
            self.sandbox = SandboxConfig(**self.sandbox)

    @property
    def timeout_ms(self) -> int:
        return self.sandbox.timeout_ms

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        """Create a GatewayConfig from a dictionary, ignoring unknown keys.

        Args:
            data: Dictionary with configuration values. A nested "sandbox"
                dict is turned into a SandboxConfig.

        Returns:
            A new GatewayConfig instance.
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["list_params"] = list(self.list_params)
        data["keep_headers"] = sorted(self.keep_headers)
        data["sandbox"]["level"] = self.sandbox.level.value
        return data
