"""
Capability surface and response governor handed to sandboxed scripts.
"""
from codegate.capabilities.accounts import resolve_account
from codegate.capabilities.quota import CallQuota
from codegate.capabilities.sanitize import (
    ResponseSanitizer,
    clamp_list_params,
    decode_body,
    strip_html,
    truncate_string,
)
from codegate.capabilities.surface import CapabilitySurface, VERBS, normalize_path

__all__ = [
    "resolve_account",
    "CallQuota",
    "ResponseSanitizer",
    "clamp_list_params",
    "decode_body",
    "strip_html",
    "truncate_string",
    "CapabilitySurface",
    "VERBS",
    "normalize_path",
]
