"""
SMTP Client
===========

Send capability. Builds a single-part MIME message and submits it over
smtplib: implicit TLS on port 465, STARTTLS when require_tls is set,
plain SMTP otherwise.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import TYPE_CHECKING

import markdown

from contracts import AuthFailedError, ConnectionFailedError, InvalidArgumentError, SendFailedError

if TYPE_CHECKING:
    from src.mcp_imap_smtp.config import Config

logger = logging.getLogger("mcp-imap-smtp.smtp")

BODY_FORMATS = ("text", "markdown", "html")
IMPLICIT_TLS_PORT = 465
MARKDOWN_EXTENSIONS = ["extra", "sane_lists", "toc"]


def markdown_to_html(text: str) -> str:
    """Render markdown to HTML (tables, fenced code and heading ids enabled)."""
    return markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS)


class SMTPClient:
    """Sends mail as config.my_email through the configured SMTP server."""

    def __init__(self, config: Config, *, timeout: float = 30.0) -> None:
        self._config = config
        self._timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        creds = self._config.smtp
        try:
            if creds.port == IMPLICIT_TLS_PORT:
                conn = smtplib.SMTP_SSL(
                    creds.server,
                    creds.port,
                    timeout=self._timeout,
                    context=ssl.create_default_context(),
                )
            else:
                conn = smtplib.SMTP(creds.server, creds.port, timeout=self._timeout)
                if creds.use_tls:
                    conn.starttls(context=ssl.create_default_context())
        except (smtplib.SMTPException, OSError) as e:
            raise ConnectionFailedError(f"Failed to connect to SMTP server: {e}") from e

        try:
            conn.login(creds.username, creds.password)
        except smtplib.SMTPException as e:
            conn.close()
            raise AuthFailedError(f"Failed to authenticate: {e}") from e

        return conn

    def validate_connection(self) -> None:
        """Connect, authenticate and quit."""
        conn = self._connect()
        try:
            conn.quit()
        except smtplib.SMTPException as e:
            logger.debug(f"Ignoring SMTP quit error: {e}")

    def build_message(
        self,
        to: str,
        subject: str,
        body: str,
        body_format: str = "text",
        cc: str = "",
    ) -> EmailMessage:
        """Compose the message. Addresses must already be resolved."""
        body_format = (body_format or "text").lower()
        if body_format not in BODY_FORMATS:
            raise InvalidArgumentError(
                f"Invalid body_format {body_format!r}: use 'text', 'markdown' or 'html'"
            )

        msg = EmailMessage()
        msg["From"] = self._config.my_email
        msg["To"] = to
        if cc:
            msg["Cc"] = cc
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()

        if body_format == "markdown":
            msg.set_content(markdown_to_html(body), subtype="html")
        elif body_format == "html":
            msg.set_content(body, subtype="html")
        else:
            msg.set_content(body)
        return msg

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        body_format: str = "text",
        cc: str = "",
        bcc: str = "",
    ) -> list[str]:
        """
        Send one message. Contact names are resolved for to, cc and bcc.
        bcc is added to the envelope recipients only, never to the headers.

        Returns the envelope recipient list.
        """
        if not to or not subject or not body:
            raise InvalidArgumentError("Missing required parameters: to, subject, and body are required")

        to = self._config.resolve_email(to)
        cc = self._config.resolve_email(cc) if cc else ""
        bcc = self._config.resolve_email(bcc) if bcc else ""

        msg = self.build_message(to, subject, body, body_format, cc)
        recipients = [addr for addr in (to, cc, bcc) if addr]

        conn = self._connect()
        try:
            refused = conn.send_message(msg, from_addr=self._config.my_email, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            raise SendFailedError(f"Failed to send email: {e}") from e
        finally:
            try:
                conn.quit()
            except (smtplib.SMTPException, OSError) as e:
                logger.debug(f"Ignoring SMTP quit error: {e}")

        if refused:
            raise SendFailedError(f"Recipients refused: {', '.join(sorted(refused))}")

        logger.info(f"Email sent to {len(recipients)} recipient(s)")
        return recipients
