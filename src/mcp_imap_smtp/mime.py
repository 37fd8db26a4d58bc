"""
MIME Helpers
============

Body, attachment and header extraction for raw RFC 822 messages.

Parts are numbered in walk order: each top-level part of a multipart message
takes the next index, and the children of a nested multipart container take
the indexes that follow it. get_email_contents reports attachments with these
indexes and get_attachment accepts them.
"""

from __future__ import annotations

import email
import email.message
from collections.abc import Iterator
from email.errors import HeaderParseError
from email.header import decode_header

from contracts import AttachmentContent, AttachmentInfo, AttachmentNotFoundError

PREVIEW_LENGTH = 100


def decode_header_value(header: str | bytes | None) -> str:
    """Decode an RFC 2047 encoded header."""
    if not header:
        return ""
    if isinstance(header, bytes):
        header = header.decode("utf-8", errors="replace")

    try:
        parts = decode_header(header)
    except HeaderParseError:
        return header

    decoded_parts = []
    for part, charset in parts:
        if isinstance(part, bytes):
            try:
                decoded_parts.append(part.decode(charset or "utf-8", errors="replace"))
            except LookupError:
                # unknown charset
                decoded_parts.append(part.decode("utf-8", errors="replace"))
        else:
            decoded_parts.append(part)
    return "".join(decoded_parts)


def decode_payload(part: email.message.Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""

    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def is_attachment(part: email.message.Message) -> bool:
    disposition = part.get_content_disposition()
    return disposition == "attachment" or (disposition == "inline" and bool(part.get_filename()))


def _numbered_parts(msg: email.message.Message) -> Iterator[tuple[int, email.message.Message]]:
    index = 0
    for part in msg.get_payload():
        index += 1
        yield index, part
        if part.is_multipart() and not is_attachment(part):
            for inner in part.get_payload():
                index += 1
                yield index, inner


def _attachment_info(index: int, part: email.message.Message) -> AttachmentInfo:
    payload = part.get_payload(decode=True) or b""
    return AttachmentInfo(
        index=index,
        filename=decode_header_value(part.get_filename()),
        content_type=part.get_content_type(),
        size=len(payload),
    )


def parse_body(raw: bytes) -> tuple[str, str, list[AttachmentInfo]]:
    """
    Extract (body, content_type, attachments) from a raw message.

    text/plain wins over text/html when both are present. Unparseable input
    is returned as-is with content type text/plain.
    """
    try:
        msg = email.message_from_bytes(raw)
    except Exception:
        return raw.decode("utf-8", errors="replace"), "text/plain", []

    if not msg.is_multipart():
        return decode_payload(msg), msg.get_content_type(), []

    text_body = ""
    html_body = ""
    attachments = []

    for index, part in _numbered_parts(msg):
        if is_attachment(part):
            attachments.append(_attachment_info(index, part))
            continue

        content_type = part.get_content_type()
        if content_type == "text/plain" and not text_body:
            text_body = decode_payload(part)
        elif content_type == "text/html" and not html_body:
            html_body = decode_payload(part)

    if text_body:
        return text_body, "text/plain", attachments
    if html_body:
        return html_body, "text/html", attachments
    return "", "text/plain", attachments


def extract_attachment(raw: bytes, index: int) -> AttachmentContent:
    """Return the decoded MIME part at the given 1-based index."""
    msg = email.message_from_bytes(raw)
    if not msg.is_multipart():
        raise AttachmentNotFoundError("Message is not multipart, no attachments")

    for current, part in _numbered_parts(msg):
        if current == index:
            return AttachmentContent(
                filename=decode_header_value(part.get_filename()),
                content_type=part.get_content_type(),
                data=part.get_payload(decode=True) or b"",
            )

    raise AttachmentNotFoundError(f"Attachment at index {index} not found")


def get_email_preview(body: str, max_len: int = PREVIEW_LENGTH) -> str:
    """First max_len characters of the body with whitespace collapsed."""
    body = " ".join(body.split())
    if len(body) <= max_len:
        return body
    return body[:max_len] + "..."
