"""
New-Mail Notifications
======================

Background poller that detects newly arrived INBOX messages and pushes one
"new_email" notification per message through a Broadcaster.

The poller keeps a watermark: the highest UID it has already notified for.
Each cycle asks the gateway for messages above the watermark, delivers them
in ascending UID order and advances the watermark after each delivery, so a
cycle interrupted part-way re-notifies the undelivered tail on the next
tick (at-least-once).

The watermark survives stop()/start(): a poller restarted after the last
client left resumes from where it stopped instead of skipping the mail that
arrived in between.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime

import anyio.to_thread

from contracts import (
    Broadcaster,
    EmailMCPError,
    MailboxGateway,
    MessageSummary,
    NotificationEvent,
    PollerState,
)
from src.mcp_imap_smtp.config import DEFAULT_CHECK_INTERVAL_SECONDS
from src.mcp_imap_smtp.mime import get_email_preview

logger = logging.getLogger("mcp-imap-smtp.notifications")

NEW_EMAIL_METHOD = "new_email"


def to_rfc3339(value: datetime | None) -> str:
    """RFC3339 timestamp. Naive datetimes are taken as local time."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat(timespec="seconds")


def build_notification(message: MessageSummary, preview: str) -> NotificationEvent:
    return NotificationEvent(
        email_id=str(message.uid),
        sender=message.sender,
        subject=message.subject,
        received_at=to_rfc3339(message.received_at),
        preview=preview,
    )


class Watermark:
    """Highest UID already observed. Never decreases."""

    def __init__(self, value: int = 0) -> None:
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def advance(self, uid: int) -> int:
        """Raise the watermark to uid if higher. Returns the resulting value."""
        with self._lock:
            if uid > self._value:
                self._value = uid
            return self._value


class NewMailPoller:
    """
    Single background task polling one mailbox.

    start() and stop() are idempotent. stop() is synchronous, cancels the
    loop task without waiting for it and abandons any in-flight gateway call.
    """

    def __init__(
        self,
        gateway: MailboxGateway,
        broadcaster: Broadcaster,
        *,
        interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        preview_length: int = 100,
    ) -> None:
        self._gateway = gateway
        self._broadcaster = broadcaster
        self._interval = interval_seconds or DEFAULT_CHECK_INTERVAL_SECONDS
        self._preview_length = preview_length

        self._watermark = Watermark()
        self._initialized = False
        self._state = PollerState.IDLE
        self._task: asyncio.Task | None = None
        self._disabled_logged = False

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def watermark(self) -> int:
        return self._watermark.value

    @property
    def initialized(self) -> bool:
        """True once the watermark has been read from the mailbox."""
        return self._initialized

    @property
    def interval(self) -> float:
        return self._interval

    def is_running(self) -> bool:
        return self._state is PollerState.RUNNING

    async def start(self) -> None:
        """
        Begin polling. No-op when already running or starting.

        Returns without touching the mailbox: the first run initializes the
        watermark from inside the background task.
        """
        if not self._broadcaster.supports_push:
            if not self._disabled_logged:
                logger.warning("Transport cannot push to clients, notifications disabled")
                self._disabled_logged = True
            return

        if self._state in (PollerState.RUNNING, PollerState.STARTING):
            return

        self._state = PollerState.RUNNING if self._initialized else PollerState.STARTING
        self._task = asyncio.create_task(self._run(), name="new-mail-poller")
        self._task.add_done_callback(self._on_task_done)
        logger.info(f"Email notification checker started (interval: {self._interval}s)")

    async def _initialize_watermark(self) -> None:
        try:
            uid = await anyio.to_thread.run_sync(self._gateway.highest_uid, abandon_on_cancel=True)
        except EmailMCPError as e:
            logger.warning(f"Could not get initial email UID: {e}")
            uid = 0
        except Exception:
            logger.exception("Unexpected error getting initial email UID")
            uid = 0
        self._watermark.advance(uid)
        self._initialized = True
        logger.info(f"Notification watermark initialized at UID {self._watermark.value}")

    def stop(self) -> None:
        """Stop polling. Idempotent; never waits for an in-flight cycle."""
        task = self._task
        if task is None:
            return

        self._task = None
        self._state = PollerState.STOPPING
        task.cancel()
        logger.info("Email notification checker stopping")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if self._task is None and self._state is PollerState.STOPPING:
            self._state = PollerState.IDLE
        elif self._task is task:
            # loop exited without stop()
            self._task = None
            self._state = PollerState.IDLE
        logger.info("Email notification checker stopped")

    async def _run(self) -> None:
        if not self._initialized:
            await self._initialize_watermark()
            if self._state is PollerState.STARTING:
                self._state = PollerState.RUNNING

        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.check_for_new_mail()
            except Exception:
                logger.exception("Unexpected error in notification cycle")

    async def check_for_new_mail(self) -> int:
        """
        Run one poll cycle. Returns the number of notifications delivered.

        Gateway errors for the whole cycle are logged and end the cycle with
        the watermark unchanged.
        """
        since = self._watermark.value
        logger.info(f"Checking for new emails (since UID: {since})...")

        try:
            messages = await anyio.to_thread.run_sync(
                self._gateway.messages_since, since, abandon_on_cancel=True
            )
        except EmailMCPError as e:
            logger.error(f"Error checking for new emails: {e}")
            return 0

        new_messages = sorted((m for m in messages if m.uid > since), key=lambda m: m.uid)
        logger.info(f"Check complete: found {len(new_messages)} new email(s)")

        delivered = 0
        for message in new_messages:
            if message.uid <= self._watermark.value:
                continue

            preview = await self._preview(message.uid)
            event = build_notification(message, preview)
            logger.info(
                f"New email received: ID={event.email_id} From={event.sender} Subject={event.subject}"
            )

            await self._broadcaster.deliver(event.kind, event.to_params())
            self._watermark.advance(message.uid)
            delivered += 1

        return delivered

    async def _preview(self, uid: int) -> str:
        try:
            detail = await anyio.to_thread.run_sync(
                self._gateway.get_email_contents, str(uid), abandon_on_cancel=True
            )
        except EmailMCPError as e:
            logger.warning(f"Could not fetch body of email {uid} for preview: {e}")
            return ""
        return get_email_preview(detail.body, self._preview_length)
