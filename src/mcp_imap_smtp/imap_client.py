"""
IMAP Client Wrapper
===================

Mailbox gateway over IMAP. Every operation opens its own connection,
selects INBOX and logs out afterwards, so the poller and tool calls never
share a connection.

INVARIANTS:
- Fetching never sets \\Seen (read-only SELECT plus BODY.PEEK)
- mark_as_read adds ONLY the \\Seen flag
- No logging of message bodies or attachments
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING

from imapclient import SEEN, IMAPClient
from imapclient.exceptions import IMAPClientError

from contracts import (
    AttachmentContent,
    AuthFailedError,
    ConnectionFailedError,
    EmailDetail,
    EmailNotFoundError,
    InvalidArgumentError,
    InvalidEmailIdError,
    MessageSummary,
)
from src.mcp_imap_smtp.mime import decode_header_value, extract_attachment, parse_body

if TYPE_CHECKING:
    from src.mcp_imap_smtp.credentials import Credentials

logger = logging.getLogger("mcp-imap-smtp.imap")

INBOX = "INBOX"
SUMMARY_FIELDS = ["ENVELOPE", "FLAGS", "INTERNALDATE"]
MAX_UID = 2**32 - 1


def parse_uid(email_id: str | int) -> int:
    """
    Parse an email_id into a UID.

    Raises InvalidEmailIdError for anything that is not a positive 32-bit
    decimal integer.
    """
    text = str(email_id).strip()
    if not text.isdigit():
        raise InvalidEmailIdError(f"Invalid email ID: {email_id!r}")
    uid = int(text)
    if uid < 1 or uid > MAX_UID:
        raise InvalidEmailIdError(f"Invalid email ID: {email_id!r}")
    return uid


def format_address(address) -> str:
    """Render an imapclient Address as 'Name <mailbox@host>' or 'mailbox@host'."""
    if address is None:
        return ""
    mailbox = decode_header_value(address.mailbox)
    host = decode_header_value(address.host)
    addr = f"{mailbox}@{host}" if host else mailbox
    name = decode_header_value(address.name)
    if name:
        return f"{name} <{addr}>"
    return addr


def _bare_address(address) -> str:
    mailbox = decode_header_value(address.mailbox)
    host = decode_header_value(address.host)
    return f"{mailbox}@{host}" if host else mailbox


class EmailIMAPClient:
    """
    IMAP mailbox gateway.

    This class intentionally does NOT implement:
    - delete/expunge
    - move/copy
    """

    def __init__(self, credentials: Credentials, *, timeout: float = 30.0) -> None:
        self._credentials = credentials
        self._timeout = timeout

    @property
    def server(self) -> str:
        return self._credentials.server

    def connect(self) -> IMAPClient:
        """
        Open and authenticate a new IMAP connection.

        ERRORS:
        - ConnectionFailedError: server unreachable
        - AuthFailedError: login rejected
        """
        credentials = self._credentials
        try:
            client = IMAPClient(
                credentials.server,
                port=credentials.port,
                ssl=credentials.use_tls,
                timeout=self._timeout,
            )
        except Exception as e:
            raise ConnectionFailedError(f"Failed to connect to IMAP server: {e}") from e

        try:
            client.login(credentials.username, credentials.password)
        except Exception as e:
            self._logout(client)
            raise AuthFailedError(f"Failed to login: {e}") from e

        return client

    def _logout(self, client: IMAPClient) -> None:
        try:
            client.logout()
        except (IMAPClientError, OSError) as e:
            logger.debug(f"Ignoring IMAP logout error: {e}")

    @contextmanager
    def _session(self) -> Iterator[IMAPClient]:
        client = self.connect()
        try:
            yield client
        except (IMAPClientError, OSError) as e:
            raise ConnectionFailedError(f"IMAP operation failed: {e}") from e
        finally:
            self._logout(client)

    def validate_connection(self) -> None:
        """Connect, authenticate and log out."""
        with self._session():
            pass

    def highest_uid(self) -> int:
        """Highest UID in INBOX, 0 when empty."""
        with self._session() as client:
            info = client.select_folder(INBOX, readonly=True)
            if not info.get(b"EXISTS"):
                return 0
            return max(client.search(["ALL"]), default=0)

    def messages_since(self, uid: int) -> list[MessageSummary]:
        """
        INBOX messages with UID > uid, ascending.

        UIDNEXT from SELECT short-circuits the common "nothing new" case in a
        single round trip. "uid+1:*" always matches at least the last message,
        so results are filtered client-side.
        """
        with self._session() as client:
            info = client.select_folder(INBOX, readonly=True)
            uid_next = info.get(b"UIDNEXT")

            if uid_next is not None:
                if uid_next <= uid + 1:
                    return []
                data = client.fetch(f"{uid + 1}:*", SUMMARY_FIELDS)
            else:
                candidates = [u for u in client.search(["UID", f"{uid + 1}:*"]) if u > uid]
                if not candidates:
                    return []
                data = client.fetch(candidates, SUMMARY_FIELDS)

        summaries = [self._safe_summary(u, d) for u, d in data.items() if u > uid]
        summaries.sort(key=lambda m: m.uid)
        return summaries

    def get_inbox(self, *, limit: int = 20, unread_only: bool = False) -> list[MessageSummary]:
        """Most recent INBOX messages, newest first."""
        if limit < 1:
            raise InvalidArgumentError("limit must be >= 1")

        with self._session() as client:
            client.select_folder(INBOX, readonly=True)
            uids = sorted(client.search(["UNSEEN"] if unread_only else ["ALL"]))
            uids = uids[-limit:]
            if not uids:
                return []
            data = client.fetch(uids, SUMMARY_FIELDS)

        summaries = [self._safe_summary(u, d) for u, d in data.items()]
        summaries.sort(key=lambda m: m.uid, reverse=True)
        return summaries

    def _fetch_raw(self, client: IMAPClient, uid: int, fields: list[str]) -> dict:
        client.select_folder(INBOX, readonly=True)
        data = client.fetch([uid], fields + ["BODY.PEEK[]"])
        message = data.get(uid)
        if not message:
            raise EmailNotFoundError(f"Email {uid} not found")
        return message

    def get_email_contents(self, email_id: str) -> EmailDetail:
        """Full content of one message. Uses BODY.PEEK so \\Seen is untouched."""
        uid = parse_uid(email_id)

        with self._session() as client:
            data = self._fetch_raw(client, uid, SUMMARY_FIELDS)

        summary = self._summary(uid, data)
        envelope = data.get(b"ENVELOPE")
        body, content_type, attachments = parse_body(data.get(b"BODY[]") or b"")

        return EmailDetail(
            uid=uid,
            sender=summary.sender,
            to=[_bare_address(a) for a in (envelope.to or ())] if envelope else [],
            cc=[_bare_address(a) for a in (envelope.cc or ())] if envelope else [],
            subject=summary.subject,
            received_at=summary.received_at,
            body=body,
            content_type=content_type,
            read=summary.read,
            attachments=attachments,
        )

    def get_attachment(self, email_id: str, index: int) -> AttachmentContent:
        """Decoded MIME part at a 1-based index from get_email_contents."""
        uid = parse_uid(email_id)
        if index < 1:
            raise InvalidArgumentError("attachment_index must be >= 1")

        with self._session() as client:
            data = self._fetch_raw(client, uid, [])

        raw = data.get(b"BODY[]")
        if not raw:
            raise EmailNotFoundError(f"Email {uid} has no body data")
        return extract_attachment(raw, index)

    def mark_as_read(self, email_id: str) -> None:
        """Add \\Seen to one message. Idempotent."""
        uid = parse_uid(email_id)

        with self._session() as client:
            client.select_folder(INBOX)
            if uid not in client.search(["UID", str(uid)]):
                raise EmailNotFoundError(f"Email {uid} not found")
            client.add_flags([uid], [SEEN])

    def _safe_summary(self, uid: int, data: dict) -> MessageSummary:
        """Summary for one message; a malformed envelope yields a bare summary."""
        try:
            return self._summary(uid, data)
        except Exception as e:
            logger.warning(f"Malformed envelope for email {uid}: {e}")
            return MessageSummary(
                uid=uid,
                sender="",
                subject="",
                received_at=data.get(b"INTERNALDATE"),
                read=SEEN in (data.get(b"FLAGS") or ()),
            )

    def _summary(self, uid: int, data: dict) -> MessageSummary:
        envelope = data.get(b"ENVELOPE")
        flags = data.get(b"FLAGS") or ()

        sender = ""
        subject = ""
        received_at: datetime | None = None
        if envelope is not None:
            if envelope.from_:
                sender = format_address(envelope.from_[0])
            subject = decode_header_value(envelope.subject)
            received_at = envelope.date
        if received_at is None:
            received_at = data.get(b"INTERNALDATE")

        return MessageSummary(
            uid=uid,
            sender=sender,
            subject=subject,
            received_at=received_at,
            read=SEEN in flags,
        )
