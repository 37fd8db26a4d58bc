"""
Mailbox & Notification MCP Server Contract
==========================================

IMAP/SMTP MCP server with a background new-mail notifier.

This contract defines the required behavior of all public interfaces.
Implementation SHALL perform ONLY declared behaviors.

AUTHORITY: This file is the SINGLE authoritative source for server behavior.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Protocol, runtime_checkable


# =============================================================================
# DOMAIN TYPES
# =============================================================================

class PollerState(Enum):
    """Run-state of the new-mail poller."""
    IDLE = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPING = auto()


@dataclass(frozen=True)
class MessageSummary:
    """Envelope-level view of one INBOX message."""
    uid: int
    sender: str
    subject: str
    received_at: datetime | None
    read: bool


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment metadata. index is the 1-based MIME part index."""
    index: int
    filename: str
    content_type: str
    size: int


@dataclass(frozen=True)
class AttachmentContent:
    """Raw attachment bytes as stored in the message."""
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class EmailDetail:
    """Full content of one message."""
    uid: int
    sender: str
    to: list[str]
    cc: list[str]
    subject: str
    received_at: datetime | None
    body: str
    content_type: str
    read: bool
    attachments: list[AttachmentInfo] = field(default_factory=list)


@dataclass(frozen=True)
class NotificationEvent:
    """One new-mail notification, built by the poller and handed to the broadcaster."""
    email_id: str
    sender: str
    subject: str
    received_at: str  # RFC3339
    preview: str
    kind: str = "new_email"

    def to_params(self) -> dict[str, Any]:
        """Wire params. Field names are part of the client contract."""
        return {
            "email_id": self.email_id,
            "from": self.sender,
            "subject": self.subject,
            "received_at": self.received_at,
            "preview": self.preview,
        }


# =============================================================================
# ERROR TYPES
# =============================================================================

class EmailMCPError(Exception):
    """Base error for all mail server operations."""
    code: str = "EMAIL_MCP_ERROR"


class ConfigError(EmailMCPError):
    """
    ERRORS-STARTUP-01: Config file missing, unreadable, or malformed.

    RECOVERY: Fatal. Process exits with the reason logged.
    """
    code = "CONFIG_ERROR"


class BiosecretDeniedError(EmailMCPError):
    """
    ERRORS-STARTUP-02: User cancelled the keychain prompt for a password.

    RECOVERY: Fatal. Restart the server to retry.
    """
    code = "BIOSECRET_DENIED"


class BiosecretNotFoundError(EmailMCPError):
    """
    ERRORS-STARTUP-03: No password in config and none in the keychain.

    RECOVERY: Fatal. Store the password or add it to the config file.
    """
    code = "BIOSECRET_NOT_FOUND"


class ConnectionFailedError(EmailMCPError):
    """
    ERRORS-CONN-01: Mail server unreachable.

    RECOVERY: Tools report failure; the poller retries on its next tick.
    """
    code = "CONNECTION_FAILED"


class AuthFailedError(EmailMCPError):
    """
    ERRORS-CONN-02: Mail server rejected the credentials.

    RECOVERY: Tools report failure; the poller retries on its next tick.
    """
    code = "AUTH_FAILED"


class EmailNotFoundError(EmailMCPError):
    """
    ERRORS-TOOL-01: No message with the given UID in INBOX.

    RECOVERY: Agent should refresh the inbox listing.
    """
    code = "EMAIL_NOT_FOUND"


class AttachmentNotFoundError(EmailMCPError):
    """
    ERRORS-TOOL-02: Message has no MIME part at the requested index.

    RECOVERY: Agent should use indexes from get_email_contents.
    """
    code = "ATTACHMENT_NOT_FOUND"


class InvalidEmailIdError(EmailMCPError):
    """
    ERRORS-TOOL-03: email_id is not a positive decimal UID.

    RECOVERY: None. Request rejected, never retried.
    """
    code = "INVALID_EMAIL_ID"


class InvalidArgumentError(EmailMCPError):
    """
    ERRORS-TOOL-04: Required tool argument missing or out of range.

    RECOVERY: Agent must correct the arguments.
    """
    code = "INVALID_ARGUMENT"


class SendFailedError(EmailMCPError):
    """
    ERRORS-TOOL-05: SMTP server refused the message or the session failed.

    RECOVERY: Agent may retry explicitly; never retried automatically.
    """
    code = "SEND_FAILED"


# =============================================================================
# COLLABORATOR CONTRACTS
# =============================================================================

@runtime_checkable
class MailboxGateway(Protocol):
    """
    Mail retrieval capability. Pure I/O, no state between calls.

    PRE-GATEWAY-01: Each call opens its own authenticated connection

    POST-GATEWAY-01: highest_uid() returns 0 for an empty INBOX
    POST-GATEWAY-02: messages_since(uid) returns only UIDs > uid, ascending
    POST-GATEWAY-03: messages_since short-circuits when UIDNEXT <= uid + 1

    INV-GATEWAY-01 (Read-Only Fetch): Fetching never sets \\Seen
    INV-GATEWAY-02 (Targeted Mutation): mark_as_read adds ONLY \\Seen
    INV-GATEWAY-03 (Containment): One malformed message never fails a listing

    ERRORS:
    - CONNECTION_FAILED / AUTH_FAILED: connectivity
    - EMAIL_NOT_FOUND / ATTACHMENT_NOT_FOUND: not-found
    - INVALID_EMAIL_ID: malformed identifier, raised before any I/O
    """

    def highest_uid(self) -> int:
        ...

    def messages_since(self, uid: int) -> list[MessageSummary]:
        ...

    def get_email_contents(self, email_id: str) -> EmailDetail:
        ...

    def mark_as_read(self, email_id: str) -> None:
        ...


@runtime_checkable
class Broadcaster(Protocol):
    """
    Fan-out sink for notifications.

    POST-BROADCAST-01: deliver() reaches every currently connected subscriber

    INV-BROADCAST-01 (Isolation): A failing subscriber does not prevent
                     delivery to the others
    INV-BROADCAST-02 (Never Raises): deliver() never raises to the poller

    ERRORS: None
    """

    supports_push: bool

    async def deliver(self, method: str, params: dict[str, Any]) -> None:
        ...


@runtime_checkable
class NewMailPollerContract(Protocol):
    """
    Background new-mail detector.

    PRE-POLL-01: A push-capable broadcaster was supplied at construction

    POST-POLL-01: First run sets watermark to highest_uid(), or 0 on failure
    POST-POLL-02: check_for_new_mail() notifies only UIDs > watermark
    POST-POLL-03: Notifications within a cycle are in ascending UID order
    POST-POLL-04: Body fetch failure still notifies, with preview ""

    INV-POLL-01 (Monotonic): Watermark never decreases
    INV-POLL-02 (At-Least-Once): Watermark advances only after delivery, so
                an interrupted cycle re-notifies the undelivered tail
    INV-POLL-03 (Idempotent Lifecycle): start() while running and stop()
                while idle are no-ops
    INV-POLL-04 (Prompt Stop): stop() never waits for an in-flight tick and
                no tick begins after it returns
    INV-POLL-05 (Prompt Start): start() returns without waiting on the mailbox;
                the watermark is initialized inside the background task

    ERRORS: None. Cycle errors are logged and contained.
    """

    async def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    async def check_for_new_mail(self) -> None:
        ...


@runtime_checkable
class LifecycleContract(Protocol):
    """
    Client reference counting for multi-client mode.

    POST-LIFECYCLE-01: Count crossing 0 -> 1 starts the poller
    POST-LIFECYCLE-02: Count crossing 1 -> 0 stops the poller

    INV-LIFECYCLE-01 (Serialized): Count update and start/stop decision are
                     one critical section
    INV-LIFECYCLE-02 (Floor): Count never drops below 0

    ERRORS: None
    """

    async def on_client_connected(self) -> None:
        ...

    async def on_client_disconnected(self) -> None:
        ...


# =============================================================================
# TOOL CONTRACTS
# =============================================================================

@runtime_checkable
class SendEmailContract(Protocol):
    """
    Tool: send_email

    PRE-SEND-01: to, subject, body are non-empty
    PRE-SEND-02: body_format in {"text", "markdown", "html"}

    POST-SEND-01: Contact names in to/cc/bcc resolved to addresses
    POST-SEND-02: markdown bodies delivered as text/html

    INV-SEND-01 (Blind Copy): bcc appears in envelope recipients only

    ERRORS:
    - INVALID_ARGUMENT: required field missing
    - SEND_FAILED: SMTP refused or failed
    """

    def send_email(
        self,
        *,
        to: str,
        subject: str,
        body: str,
        body_format: str = "text",
        cc: str = "",
        bcc: str = "",
    ) -> str:
        ...


@runtime_checkable
class ReadMailContract(Protocol):
    """
    Tools: get_inbox, get_email_contents, get_attachment, mark_email_read

    POST-INBOX-01: get_inbox returns {emails, count}, newest first
    POST-INBOX-02: len(emails) <= limit
    POST-CONTENTS-01: get_email_contents lists attachments with part indexes
    POST-ATTACH-01: image/* attachments returned as image content
    POST-MARKREAD-01: \\Seen flag set on the message

    ERRORS:
    - INVALID_EMAIL_ID: non-numeric id
    - EMAIL_NOT_FOUND: no such UID
    - ATTACHMENT_NOT_FOUND: no such part
    """

    def get_inbox(self, *, limit: int = 20, unread_only: bool = False) -> dict:
        ...

    def get_email_contents(self, *, email_id: str) -> EmailDetail:
        ...

    def mark_email_read(self, *, email_id: str) -> str:
        ...


# =============================================================================
# TEST CASE INDEX (Traceability)
# =============================================================================

TEST_CASES = {
    # Poller
    "test_start_initializes_watermark_from_mailbox": {
        "contract": "NewMailPollerContract",
        "enforces": ["POST-POLL-01"],
    },
    "test_start_unreachable_mailbox_uses_zero": {
        "contract": "NewMailPollerContract",
        "enforces": ["POST-POLL-01"],
    },
    "test_new_message_notified_once": {
        "contract": "NewMailPollerContract",
        "enforces": ["POST-POLL-02", "INV-POLL-01"],
    },
    "test_messages_notified_in_uid_order": {
        "contract": "NewMailPollerContract",
        "enforces": ["POST-POLL-03"],
    },
    "test_body_failure_gives_empty_preview": {
        "contract": "NewMailPollerContract",
        "enforces": ["POST-POLL-04"],
    },
    "test_interrupted_cycle_renotifies_tail": {
        "contract": "NewMailPollerContract",
        "enforces": ["INV-POLL-02"],
        "adversarial": True,
    },
    "test_start_twice_single_task": {
        "contract": "NewMailPollerContract",
        "enforces": ["INV-POLL-03"],
    },
    "test_stop_prevents_further_ticks": {
        "contract": "NewMailPollerContract",
        "enforces": ["INV-POLL-04"],
    },
    "test_start_does_not_wait_for_mailbox": {
        "contract": "NewMailPollerContract",
        "enforces": ["INV-POLL-05"],
        "adversarial": True,
    },
    "test_null_broadcaster_disables_poller": {
        "contract": "NewMailPollerContract",
        "enforces": ["PRE-POLL-01"],
    },
    # Lifecycle
    "test_connect_connect_disconnect_keeps_running": {
        "contract": "LifecycleContract",
        "enforces": ["POST-LIFECYCLE-01", "POST-LIFECYCLE-02"],
    },
    "test_extra_disconnect_is_noop": {
        "contract": "LifecycleContract",
        "enforces": ["INV-LIFECYCLE-02"],
    },
    "test_concurrent_connects_start_once": {
        "contract": "LifecycleContract",
        "enforces": ["INV-LIFECYCLE-01"],
        "adversarial": True,
    },
    # Broadcaster
    "test_failing_subscriber_isolated": {
        "contract": "Broadcaster",
        "enforces": ["INV-BROADCAST-01", "INV-BROADCAST-02"],
        "adversarial": True,
    },
    "test_deliver_reaches_all_subscribers": {
        "contract": "Broadcaster",
        "enforces": ["POST-BROADCAST-01"],
    },
    # Gateway
    "test_highest_uid": {
        "contract": "MailboxGateway",
        "enforces": ["PRE-GATEWAY-01"],
    },
    "test_connection_failed": {
        "contract": "MailboxGateway",
        "enforces": ["ERRORS: CONNECTION_FAILED"],
    },
    "test_auth_failed": {
        "contract": "MailboxGateway",
        "enforces": ["ERRORS: AUTH_FAILED"],
    },
    "test_messages_since_short_circuits": {
        "contract": "MailboxGateway",
        "enforces": ["POST-GATEWAY-03"],
    },
    "test_messages_since_filters_and_sorts": {
        "contract": "MailboxGateway",
        "enforces": ["POST-GATEWAY-02"],
    },
    "test_malformed_message_does_not_poison_cycle": {
        "contract": "MailboxGateway",
        "enforces": ["INV-GATEWAY-03"],
        "adversarial": True,
    },
    "test_highest_uid_empty_mailbox": {
        "contract": "MailboxGateway",
        "enforces": ["POST-GATEWAY-01"],
    },
    "test_contents_does_not_mark_read": {
        "contract": "MailboxGateway",
        "enforces": ["INV-GATEWAY-01"],
        "adversarial": True,
    },
    "test_mark_read_only_seen_flag": {
        "contract": "MailboxGateway",
        "enforces": ["INV-GATEWAY-02", "POST-MARKREAD-01"],
    },
    "test_invalid_email_id_rejected": {
        "contract": "ReadMailContract",
        "enforces": ["ERRORS: INVALID_EMAIL_ID"],
    },
    "test_email_not_found": {
        "contract": "ReadMailContract",
        "enforces": ["ERRORS: EMAIL_NOT_FOUND"],
    },
    "test_get_inbox_newest_first": {
        "contract": "ReadMailContract",
        "enforces": ["POST-INBOX-01", "POST-INBOX-02"],
    },
    "test_contents_lists_attachments": {
        "contract": "ReadMailContract",
        "enforces": ["POST-CONTENTS-01"],
    },
    "test_attachment_image_content": {
        "contract": "ReadMailContract",
        "enforces": ["POST-ATTACH-01"],
    },
    "test_attachment_not_found": {
        "contract": "ReadMailContract",
        "enforces": ["ERRORS: ATTACHMENT_NOT_FOUND"],
    },
    # Send
    "test_send_resolves_contacts": {
        "contract": "SendEmailContract",
        "enforces": ["POST-SEND-01"],
    },
    "test_send_markdown_as_html": {
        "contract": "SendEmailContract",
        "enforces": ["POST-SEND-02"],
    },
    "test_send_bcc_not_in_headers": {
        "contract": "SendEmailContract",
        "enforces": ["INV-SEND-01"],
        "adversarial": True,
    },
    "test_send_missing_fields": {
        "contract": "SendEmailContract",
        "enforces": ["PRE-SEND-01", "ERRORS: INVALID_ARGUMENT"],
    },
    "test_send_failure_reported": {
        "contract": "SendEmailContract",
        "enforces": ["ERRORS: SEND_FAILED"],
    },
    "test_send_invalid_format": {
        "contract": "SendEmailContract",
        "enforces": ["PRE-SEND-02"],
    },
}
