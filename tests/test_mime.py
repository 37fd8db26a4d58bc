"""
MIME Helper Tests
=================
"""

from email.errors import HeaderParseError
from unittest.mock import patch

import pytest

from contracts import AttachmentNotFoundError
from src.mcp_imap_smtp.mime import (
    decode_header_value,
    extract_attachment,
    get_email_preview,
    parse_body,
)

NESTED = b"""From: alice@example.com
Subject: Nested
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="OUTER"

--OUTER
Content-Type: multipart/alternative; boundary="INNER"

--INNER
Content-Type: text/plain; charset="utf-8"

Plain body
--INNER
Content-Type: text/html; charset="utf-8"

<p>HTML body</p>
--INNER--
--OUTER
Content-Type: application/pdf; name="report.pdf"
Content-Disposition: attachment; filename="report.pdf"
Content-Transfer-Encoding: base64

JVBERi0=
--OUTER--
"""

HTML_ONLY = b"""From: alice@example.com
Subject: Html
MIME-Version: 1.0
Content-Type: multipart/alternative; boundary="B"

--B
Content-Type: text/html; charset="utf-8"

<p>Only html</p>
--B--
"""

SINGLE = b"""From: alice@example.com
Subject: Single
Content-Type: text/plain; charset="utf-8"

Just text
"""


class TestParseBody:

    def test_nested_multipart_numbering(self):
        body, content_type, attachments = parse_body(NESTED)

        assert body.strip() == "Plain body"
        assert content_type == "text/plain"
        # 1: alternative container, 2: text, 3: html, 4: pdf
        assert [(a.index, a.filename, a.content_type, a.size) for a in attachments] == [
            (4, "report.pdf", "application/pdf", 5)
        ]

    def test_html_used_without_plain_text(self):
        body, content_type, attachments = parse_body(HTML_ONLY)

        assert body.strip() == "<p>Only html</p>"
        assert content_type == "text/html"
        assert attachments == []

    def test_single_part(self):
        body, content_type, attachments = parse_body(SINGLE)

        assert body.strip() == "Just text"
        assert content_type == "text/plain"
        assert attachments == []


class TestExtractAttachment:

    def test_extract_by_listed_index(self):
        attachment = extract_attachment(NESTED, 4)

        assert attachment.filename == "report.pdf"
        assert attachment.data == b"%PDF-"

    def test_index_out_of_range(self):
        with pytest.raises(AttachmentNotFoundError):
            extract_attachment(NESTED, 5)

    def test_single_part_has_no_attachments(self):
        with pytest.raises(AttachmentNotFoundError):
            extract_attachment(SINGLE, 1)


class TestHeadersAndPreview:

    def test_decode_encoded_word(self):
        assert decode_header_value("=?utf-8?b?SGFsbG8gV8O2cmxk?=") == "Hallo Wörld"

    def test_decode_empty(self):
        assert decode_header_value(None) == ""
        assert decode_header_value(b"") == ""

    def test_preview_custom_length(self):
        assert get_email_preview("abcdef", max_len=3) == "abc..."

    def test_decode_unknown_charset(self):
        assert decode_header_value("=?x-unknown?q?hi?=") == "hi"
        assert decode_header_value(b"=?x-unknown?q?hi?=") == "hi"

    def test_decode_unparseable_header_returned_raw(self):
        with patch("src.mcp_imap_smtp.mime.decode_header", side_effect=HeaderParseError("bad")):
            assert decode_header_value("=?utf-8?b?###?=") == "=?utf-8?b?###?="
