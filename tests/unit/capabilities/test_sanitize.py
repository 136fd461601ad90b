"""
Unit tests for the response governor.
"""
import base64

import pytest

from codegate.capabilities.sanitize import (
    ResponseSanitizer,
    clamp_list_params,
    decode_body,
    strip_html,
    truncate_string,
)
from codegate.config.gateway import GatewayConfig


def encode(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


@pytest.fixture
def sanitizer():
    return ResponseSanitizer(
        max_string_chars=200,
        max_list_items=5,
        max_body_chars=100,
        keep_headers=frozenset({"subject", "from", "date"}),
    )


class TestTruncateString:
    def test_short_string_unchanged(self):
        assert truncate_string("hello", 10) == "hello"

    def test_truncated_to_exact_limit(self):
        result = truncate_string("x" * 5000, 3000)
        assert len(result) == 3000
        assert result.endswith("[TRUNCATED: 5000 chars total]")

    def test_idempotent(self):
        once = truncate_string("y" * 5000, 3000)
        assert truncate_string(once, 3000) == once

    def test_tiny_limit(self):
        assert truncate_string("abcdef", 3) == "abc"


class TestStripHtml:
    def test_removes_style_script_and_tags(self):
        html = (
            "<html><head><style>p { color: red; }</style>"
            "<script>alert(1)</script></head>"
            "<body><p>Hello&nbsp;<b>world</b> &amp; you</p></body></html>"
        )
        assert strip_html(html) == "Hello world & you"

    def test_collapses_whitespace(self):
        assert strip_html("a\n\n   b\t c") == "a b c"

    def test_escaped_markup_stays_out(self):
        result = strip_html("<p>&lt;script&gt;alert(1)&lt;/script&gt; &lt;b&gt;bold&lt;/b&gt;</p>")
        assert "<" not in result
        assert ">" not in result
        assert "alert" not in result
        assert result == "bold"

    def test_removes_invisible_characters(self):
        assert strip_html("Sale\u200c now\u00ad!\ufeff") == "Sale now!"


class TestDecodeBody:
    def test_decodes_base64url(self):
        assert decode_body(encode("hello")) == "hello"

    def test_decodes_without_padding(self):
        assert decode_body("aGVsbG8") == "hello"

    def test_rejects_plain_text(self):
        assert decode_body("hello world") is None

    def test_decodes_html_with_non_breaking_space(self):
        assert decode_body(encode("<p>Hello\u00a0world</p>")) == "<p>Hello\u00a0world</p>"

    def test_decodes_zero_width_characters(self):
        assert decode_body(encode("<div>Sale\u200c now</div>")) == "<div>Sale\u200c now</div>"

    def test_rejects_control_characters(self):
        assert decode_body(encode("ok\x07bell")) is None

    def test_rejects_binary(self):
        raw = base64.urlsafe_b64encode(bytes([0xff, 0xfe, 0x00, 0x01])).decode("ascii")
        assert decode_body(raw) is None


class TestClampListParams:
    def test_clamps_above_limit(self):
        assert clamp_list_params("/messages?maxResults=500&q=x", ["maxResults"], 100) == (
            "/messages?maxResults=100&q=x"
        )

    def test_keeps_values_within_limit(self):
        assert clamp_list_params("/messages?maxResults=5", ["maxResults"], 100) == "/messages?maxResults=5"

    def test_second_position(self):
        assert clamp_list_params("/threads?q=is:unread&maxResults=250", ["maxResults"], 100) == (
            "/threads?q=is:unread&maxResults=100"
        )

    def test_no_query(self):
        assert clamp_list_params("/profile", ["maxResults"], 100) == "/profile"


class TestResponseSanitizer:
    def test_from_config(self):
        sanitizer = ResponseSanitizer.from_config(GatewayConfig(max_list_items=7))
        assert sanitizer.max_list_items == 7
        assert sanitizer.max_string_chars == 3000

    def test_scalars_pass_through(self, sanitizer):
        assert sanitizer.sanitize(5) == 5
        assert sanitizer.sanitize(None) is None
        assert sanitizer.sanitize(True) is True

    def test_long_strings_truncated(self, sanitizer):
        result = sanitizer.sanitize({"snippet": "z" * 1000})
        assert len(result["snippet"]) == 200

    def test_lists_truncated_with_count(self, sanitizer):
        result = sanitizer.sanitize({"messages": [{"id": str(i)} for i in range(12)]})
        assert len(result["messages"]) == 5
        assert result["_truncated_messages"] == 12

    def test_top_level_list_truncated(self, sanitizer):
        assert sanitizer.sanitize(list(range(12))) == [0, 1, 2, 3, 4]

    def test_headers_filtered(self, sanitizer):
        payload = {"payload": {"headers": [
            {"name": "Subject", "value": "Hi"},
            {"name": "X-Spam-Score", "value": "9"},
            {"name": "From", "value": "a@example.com"},
        ]}}
        result = sanitizer.sanitize(payload)
        assert [h["name"] for h in result["payload"]["headers"]] == ["Subject", "From"]

    def test_body_decoded_and_stripped(self, sanitizer):
        payload = {"body": {"size": 40, "data": encode("<p>Meeting at <b>noon</b></p>")}}
        result = sanitizer.sanitize(payload)
        assert result["body"]["data"] == "Meeting at noon"

    def test_html_mail_body_with_special_spaces_decoded(self, sanitizer):
        payload = {"parts": [
            {"body": {"data": encode("<p>Hello\u00a0world</p>")}},
            {"body": {"data": encode("<div>Sale\u200c now &lt;b&gt;on&lt;/b&gt;</div>")}},
        ]}
        result = sanitizer.sanitize(payload)
        assert result["parts"][0]["body"]["data"] == "Hello world"
        assert result["parts"][1]["body"]["data"] == "Sale now on"

    def test_body_capped_at_body_limit(self, sanitizer):
        payload = {"body": {"data": encode("<div>" + "word " * 200 + "</div>")}}
        result = sanitizer.sanitize(payload)
        assert len(result["body"]["data"]) == 100
        assert "<div>" not in result["body"]["data"]

    def test_undecodable_data_treated_as_string(self, sanitizer):
        result = sanitizer.sanitize({"data": "not base64!"})
        assert result["data"] == "not base64!"

    def test_body_limit_never_exceeds_string_limit(self):
        sanitizer = ResponseSanitizer(max_string_chars=50, max_body_chars=500)
        assert sanitizer.max_body_chars == 50

    def test_idempotent(self, sanitizer):
        payload = {
            "messages": [
                {
                    "id": str(i),
                    "snippet": "s" * 500,
                    "payload": {
                        "headers": [
                            {"name": "Subject", "value": "v" * 400},
                            {"name": "Received", "value": "relay"},
                        ],
                        "parts": [
                            {"body": {"data": encode("<p>" + "text " * 100 + "</p>")}},
                            {"body": {"data": encode("short plain body")}},
                        ],
                    },
                }
                for i in range(9)
            ],
            "resultSizeEstimate": 9,
        }
        once = sanitizer.sanitize(payload)
        assert sanitizer.sanitize(once) == once
        assert once["_truncated_messages"] == 9
