"""
Email MCP Server
================

MCP server exposing mail tools over IMAP/SMTP, plus a background poller that
pushes "new_email" notifications to connected clients.

Deployment modes:
- stdio: single client; the poller starts with the process
- sse:   multi-client HTTP; the poller runs while at least one client is
         connected

INVARIANTS:
- No logging of message bodies or attachment content
- Fetching does not mutate; mark-read is explicit
- A failed tool call returns an error result, never an empty success
"""

from __future__ import annotations

import base64
import inspect
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from functools import partial
from typing import Any
from urllib.parse import quote

import anyio
import anyio.to_thread
from mcp.server import Server
from mcp.server.sse import SseServerTransport
from mcp.server.stdio import stdio_server
from mcp.types import BlobResourceContents, EmbeddedResource, ImageContent, TextContent, Tool
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Mount, Route

from contracts import (
    AttachmentContent,
    EmailDetail,
    EmailMCPError,
    InvalidArgumentError,
)
from src.mcp_imap_smtp.broadcast import SessionBroadcaster
from src.mcp_imap_smtp.config import Config
from src.mcp_imap_smtp.imap_client import EmailIMAPClient
from src.mcp_imap_smtp.lifecycle import ClientTracker
from src.mcp_imap_smtp.notifications import NewMailPoller, to_rfc3339
from src.mcp_imap_smtp.smtp_client import SMTPClient

# stderr only: stdout carries the stdio transport. Never log message content.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("mcp-imap-smtp")

SERVER_NAME = "mcp-imap-smtp"
SSE_PATH = "/sse"
MESSAGES_PATH = "/messages/"
_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no", ""}


class ToolCallError(Exception):
    """Raised from call_tool; the MCP layer turns it into an isError result."""


class EmailMCPServer:
    """Tool dispatcher and transport wiring."""

    def __init__(
        self,
        config: Config,
        *,
        imap_client: EmailIMAPClient | None = None,
        smtp_client: SMTPClient | None = None,
    ) -> None:
        self._config = config
        self._imap = imap_client or EmailIMAPClient(config.imap)
        self._smtp = smtp_client or SMTPClient(config)
        self._server = Server(SERVER_NAME)
        self._setup_tools()

    @property
    def config(self) -> Config:
        return self._config

    def validate_connections(self) -> None:
        """Test IMAP then SMTP login. Raises the first failure."""
        try:
            self._imap.validate_connection()
        except EmailMCPError as e:
            raise type(e)(f"IMAP connection failed: {e}") from e
        try:
            self._smtp.validate_connection()
        except EmailMCPError as e:
            raise type(e)(f"SMTP connection failed: {e}") from e

    def tool_definitions(self) -> list[Tool]:
        sender_info = f"Your email address: {self._config.my_email}"
        contacts_info = self._config.contacts_description()

        return [
            Tool(
                name="send_email",
                description=(
                    "Send an email via SMTP.\n\n"
                    f"{sender_info}\n\n"
                    f"{contacts_info}\n"
                    "You can use contact names instead of email addresses for the "
                    "'to', 'cc', and 'bcc' fields."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "to": {
                            "type": "string",
                            "description": "Recipient email address or contact name",
                        },
                        "subject": {"type": "string", "description": "Email subject"},
                        "body": {"type": "string", "description": "Email body content"},
                        "body_format": {
                            "type": "string",
                            "description": "Body format: 'text' (default), 'markdown', or 'html'",
                            "enum": ["text", "markdown", "html"],
                        },
                        "cc": {
                            "type": "string",
                            "description": "CC recipient email address or contact name",
                        },
                        "bcc": {
                            "type": "string",
                            "description": "BCC recipient email address or contact name",
                        },
                    },
                    "required": ["to", "subject", "body"],
                },
            ),
            Tool(
                name="get_inbox",
                description="Retrieve emails from the inbox via IMAP, newest first.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "limit": {
                            "type": "integer",
                            "description": "Maximum number of emails to return (default: 20)",
                            "minimum": 1,
                        },
                        "unread_only": {
                            "type": "boolean",
                            "description": "Only return unread emails",
                        },
                    },
                },
            ),
            Tool(
                name="get_email_contents",
                description="Get the full content of a specific email. Does not mark it as read.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "email_id": {"type": "string", "description": "ID of the email to retrieve"},
                    },
                    "required": ["email_id"],
                },
            ),
            Tool(
                name="mark_email_read",
                description="Mark an email as read on the IMAP server.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "email_id": {
                            "type": "string",
                            "description": "ID of the email to mark as read",
                        },
                    },
                    "required": ["email_id"],
                },
            ),
            Tool(
                name="get_attachment",
                description="Get the content of an email attachment as a base64-encoded string.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "email_id": {
                            "type": "string",
                            "description": "ID of the email containing the attachment",
                        },
                        "attachment_index": {
                            "type": "integer",
                            "description": "Index of the attachment (from get_email_contents attachments list)",
                            "minimum": 1,
                        },
                    },
                    "required": ["email_id", "attachment_index"],
                },
            ),
        ]

    def _setup_tools(self) -> None:
        """Register MCP tools."""

        @self._server.list_tools()
        async def list_tools() -> list[Tool]:
            return self.tool_definitions()

        @self._server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any] | None) -> list:
            return await self.dispatch(name, arguments or {})

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> list:
        """
        Run one tool call. Blocking mail I/O runs in a worker thread.

        ERRORS:
        - ToolCallError: unknown tool, bad arguments, or mail server failure
        """
        handlers = {
            "send_email": self.send_email,
            "get_inbox": self.get_inbox,
            "get_email_contents": self.get_email_contents,
            "mark_email_read": self.mark_email_read,
            "get_attachment": self.get_attachment,
        }
        handler = handlers.get(name)
        if handler is None:
            raise ToolCallError(f"Unknown tool: {name}")

        try:
            inspect.signature(handler).bind(**arguments)
        except TypeError as e:
            raise ToolCallError(f"Invalid arguments for {name}: {e}") from e

        try:
            result = await anyio.to_thread.run_sync(partial(handler, **arguments))
        except EmailMCPError as e:
            logger.warning(f"Tool {name} failed: {e.code}")
            raise ToolCallError(f"Error: {e.code}: {e}") from e

        if isinstance(result, AttachmentContent):
            return [attachment_to_content(result, arguments.get("email_id", ""))]
        if isinstance(result, str):
            return [TextContent(type="text", text=result)]
        return [TextContent(type="text", text=self._serialize_result(result))]

    def send_email(
        self,
        *,
        to: str = "",
        subject: str = "",
        body: str = "",
        body_format: str = "text",
        cc: str = "",
        bcc: str = "",
    ) -> str:
        """Send an email. Implements SendEmailContract."""
        logger.info(f"Sending email (format={body_format or 'text'})")
        self._smtp.send_email(to, subject, body, body_format or "text", cc, bcc)
        return f"Email sent successfully to {self._config.resolve_email(to)}"

    def get_inbox(self, *, limit: int = 20, unread_only: bool = False) -> dict:
        """List recent INBOX messages."""
        limit = _int_argument("limit", limit)
        logger.info(f"Fetching inbox with limit={limit} unread_only={unread_only}")
        unread_only = _bool_argument("unread_only", unread_only)
        emails = self._imap.get_inbox(limit=limit, unread_only=unread_only)
        return {"emails": emails, "count": len(emails)}

    def get_email_contents(self, *, email_id: str = "") -> EmailDetail:
        """Fetch one message. Does NOT mark it as read."""
        if not email_id:
            raise InvalidArgumentError("Missing required parameter: email_id")
        logger.info(f"Fetching email {email_id}")
        return self._imap.get_email_contents(str(email_id))

    def mark_email_read(self, *, email_id: str = "") -> str:
        """Set \\Seen on one message."""
        if not email_id:
            raise InvalidArgumentError("Missing required parameter: email_id")
        logger.info(f"Marking email {email_id} as read")
        self._imap.mark_as_read(str(email_id))
        return f"Email {email_id} marked as read"

    def get_attachment(self, *, email_id: str = "", attachment_index: int = 0) -> AttachmentContent:
        """Fetch one attachment by its MIME part index."""
        if not email_id:
            raise InvalidArgumentError("Missing required parameter: email_id")
        index = _int_argument("attachment_index", attachment_index)
        if index <= 0:
            raise InvalidArgumentError(
                "Missing or invalid required parameter: attachment_index (must be >= 1)"
            )
        return self._imap.get_attachment(str(email_id), index)

    def _serialize_result(self, result: Any) -> str:
        """Serialize result to JSON string."""

        def default_serializer(obj: Any) -> Any:
            if hasattr(obj, "__dataclass_fields__"):
                return asdict(obj)
            if isinstance(obj, datetime):
                return to_rfc3339(obj)
            if hasattr(obj, "value"):  # Enum
                return obj.value
            raise TypeError(f"Cannot serialize {type(obj)}")

        return json.dumps(result, default=default_serializer, indent=2)

    def create_poller(self, broadcaster: SessionBroadcaster) -> NewMailPoller:
        """Poller with its own gateway instance, hence its own connections."""
        return NewMailPoller(
            EmailIMAPClient(self._config.imap),
            broadcaster,
            interval_seconds=self._config.notifications.check_interval_seconds,
        )

    async def run_stdio(self) -> None:
        """Run over stdio. The poller runs for the lifetime of the process."""
        broadcaster = SessionBroadcaster()
        poller = self.create_poller(broadcaster)

        async with stdio_server() as (read_stream, write_stream):
            broadcaster.register(write_stream)
            await poller.start()
            logger.info("Starting Email MCP Server (STDIO mode)")
            try:
                await self._server.run(
                    read_stream, write_stream, self._server.create_initialization_options()
                )
            finally:
                poller.stop()
                broadcaster.unregister(write_stream)

    def create_http_app(self) -> Starlette:
        """
        Starlette app for multi-client mode: GET /sse opens a session,
        POST /messages/ carries client requests. Each session is registered
        for notifications and counted by the ClientTracker.
        """
        broadcaster = SessionBroadcaster()
        poller = self.create_poller(broadcaster)
        tracker = ClientTracker(poller)
        sse = SseServerTransport(MESSAGES_PATH)

        async def handle_sse(request: Request) -> Response:
            async with sse.connect_sse(request.scope, request.receive, request._send) as (
                read_stream,
                write_stream,
            ):
                broadcaster.register(write_stream)
                await tracker.on_client_connected()
                try:
                    await self._server.run(
                        read_stream, write_stream, self._server.create_initialization_options()
                    )
                finally:
                    broadcaster.unregister(write_stream)
                    with anyio.CancelScope(shield=True):
                        await tracker.on_client_disconnected()
            return Response()

        @asynccontextmanager
        async def lifespan(app: Starlette):
            try:
                yield
            finally:
                poller.stop()

        app = Starlette(
            routes=[
                Route(SSE_PATH, endpoint=handle_sse, methods=["GET"]),
                Mount(MESSAGES_PATH, app=sse.handle_post_message),
            ],
            lifespan=lifespan,
        )
        app.state.broadcaster = broadcaster
        app.state.tracker = tracker
        app.state.poller = poller
        return app


def _int_argument(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"'{name}' must be an integer, got {value!r}") from e


def _bool_argument(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise InvalidArgumentError(f"'{name}' must be a boolean, got {value!r}")


def attachment_to_content(attachment: AttachmentContent, email_id: str) -> ImageContent | EmbeddedResource:
    """image/* as image content, anything else as an embedded blob resource."""
    encoded = base64.b64encode(attachment.data).decode("ascii")
    logger.info(
        f"Returning attachment: filename={attachment.filename}, content_type={attachment.content_type}, "
        f"raw_size={len(attachment.data)}, base64_size={len(encoded)}"
    )

    if attachment.content_type.startswith("image/"):
        return ImageContent(type="image", data=encoded, mimeType=attachment.content_type)

    name = quote(attachment.filename or "attachment")
    return EmbeddedResource(
        type="resource",
        resource=BlobResourceContents(
            uri=f"attachment://{email_id}/{name}",
            mimeType=attachment.content_type,
            blob=encoded,
        ),
    )


def create_server(config: Config, **kwargs: Any) -> EmailMCPServer:
    """Create a new server instance."""
    return EmailMCPServer(config, **kwargs)
