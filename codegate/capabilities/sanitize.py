"""
Response governor: shrink remote payloads before a script sees them.

Every response re-entering the sandbox passes through ResponseSanitizer, and
so does every script result on its way out. Sanitizing an already sanitized
payload returns it unchanged: truncated strings are cut to exactly the cap
(marker included), truncated lists keep their true length in a sibling key
that is never overwritten, and decoded bodies no longer look like base64url.
"""
import base64
import binascii
import html
import logging
import re
import unicodedata
from typing import Any, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)

TRUNCATED_KEY_PREFIX = "_truncated_"

_BASE64URL = re.compile(r"^[A-Za-z0-9_\-]+={0,2}$")
_STYLE_BLOCK = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
# Zero-width characters, soft hyphens and the byte order mark
_INVISIBLE = re.compile("[\u00ad\u200b-\u200d\u2060\ufeff]")


def truncation_marker(total: int) -> str:
    return f"\n... [TRUNCATED: {total} chars total]"


def truncate_string(value: str, limit: int) -> str:
    """Cut a string to exactly ``limit`` characters, marker included."""
    if len(value) <= limit:
        return value
    marker = truncation_marker(len(value))
    keep = limit - len(marker)
    if keep <= 0:
        return value[:limit]
    return value[:keep] + marker


def strip_html(text: str) -> str:
    """Reduce an HTML (or plain) body to its readable text on one line.

    Entities are unescaped before tags are removed, so escaped markup cannot
    reappear as tags in the result.
    """
    text = html.unescape(text).replace("\xa0", " ")
    text = _INVISIBLE.sub("", text)
    text = _STYLE_BLOCK.sub("", text)
    text = _SCRIPT_BLOCK.sub("", text)
    text = _TAG.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def decode_body(data: str) -> Optional[str]:
    """Decode a base64url body field, or return None if it is not one.

    Only strict base64url whose bytes are valid UTF-8 text without control
    characters is accepted, so plain text (including an already decoded
    body) is left alone.
    """
    if not _BASE64URL.match(data):
        return None
    stripped = data.rstrip("=")
    if len(stripped) % 4 == 1:
        return None
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        raw = base64.b64decode(padded.translate(str.maketrans("-_", "+/")), validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if any(unicodedata.category(ch) == "Cc" and ch not in "\r\n\t" for ch in text):
        return None
    return text


def clamp_list_params(path: str, params: Iterable[str], limit: int) -> str:
    """Rewrite list-size query parameters above ``limit`` down to ``limit``."""
    for name in params:
        pattern = re.compile(rf"(?<=[?&]){re.escape(name)}=(\d+)")
        path = pattern.sub(lambda m, n=name: f"{n}={min(int(m.group(1)), limit)}", path)
    return path


class ResponseSanitizer:
    """Applies the string, list, header and body caps to a JSON value.

    Example:
        sanitizer = ResponseSanitizer(max_string_chars=3000, max_list_items=100)
        safe = sanitizer.sanitize(api_response)
    """

    def __init__(
        self,
        max_string_chars: int = 3000,
        max_list_items: int = 100,
        max_body_chars: Optional[int] = None,
        keep_headers: Optional[FrozenSet[str]] = None,
    ):
        self.max_string_chars = max_string_chars
        self.max_list_items = max_list_items
        self.max_body_chars = min(max_body_chars or max_string_chars, max_string_chars)
        self.keep_headers = frozenset(h.lower() for h in (keep_headers or ()))

    @classmethod
    def from_config(cls, config) -> "ResponseSanitizer":
        return cls(
            max_string_chars=config.max_string_chars,
            max_list_items=config.max_list_items,
            max_body_chars=config.max_body_chars,
            keep_headers=config.keep_headers,
        )

    def sanitize(self, value: Any) -> Any:
        if isinstance(value, str):
            return truncate_string(value, self.max_string_chars)
        if isinstance(value, (list, tuple)):
            return [self.sanitize(item) for item in value[: self.max_list_items]]
        if isinstance(value, dict):
            return self._sanitize_dict(value)
        return value

    def _sanitize_dict(self, obj: dict) -> dict:
        out = {}
        for key, item in obj.items():
            if key == "headers" and isinstance(item, list) and self.keep_headers:
                out[key] = self._filter_headers(item)
            elif key == "data" and isinstance(item, str):
                out[key] = self._sanitize_body(item)
            elif isinstance(item, (list, tuple)) and len(item) > self.max_list_items:
                out[key] = self.sanitize(item)
                counter = f"{TRUNCATED_KEY_PREFIX}{key}"
                # an earlier pass may already have recorded the true count
                if counter not in obj:
                    out[counter] = len(item)
            else:
                out[key] = self.sanitize(item)
        return out

    def _filter_headers(self, headers: list) -> list:
        kept = [
            h for h in headers
            if isinstance(h, dict)
            and isinstance(h.get("name"), str)
            and h["name"].lower() in self.keep_headers
        ]
        return self.sanitize(kept)

    def _sanitize_body(self, data: str) -> str:
        decoded = decode_body(data)
        if decoded is None:
            return truncate_string(data, self.max_string_chars)
        return truncate_string(strip_html(decoded), self.max_body_chars)
