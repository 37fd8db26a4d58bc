"""
Notification Broadcast
======================

Fan-out of server-initiated JSON-RPC notifications to every connected MCP
session. Sessions are tracked by the write stream their transport hands to
Server.run(); a notification is written straight to each stream.
"""

from __future__ import annotations

import logging
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectSendStream
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage, JSONRPCNotification

logger = logging.getLogger("mcp-imap-smtp.broadcast")

DEFAULT_SEND_TIMEOUT = 5.0


class SessionBroadcaster:
    """
    Delivers one notification to all registered sessions.

    Each subscriber is written to independently under its own timeout.
    A failing stream is logged and skipped; deliver() never raises.
    """

    supports_push = True

    def __init__(self, *, send_timeout: float = DEFAULT_SEND_TIMEOUT) -> None:
        self._send_timeout = send_timeout
        self._subscribers: list[MemoryObjectSendStream[SessionMessage]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def register(self, stream: MemoryObjectSendStream[SessionMessage]) -> None:
        if stream not in self._subscribers:
            self._subscribers.append(stream)

    def unregister(self, stream: MemoryObjectSendStream[SessionMessage]) -> None:
        if stream in self._subscribers:
            self._subscribers.remove(stream)

    async def deliver(self, method: str, params: dict[str, Any]) -> None:
        message = SessionMessage(
            JSONRPCMessage(JSONRPCNotification(jsonrpc="2.0", method=method, params=params))
        )

        # snapshot: sessions may come and go while we await
        for stream in list(self._subscribers):
            await self._send(stream, message)

    async def _send(self, stream: MemoryObjectSendStream[SessionMessage], message: SessionMessage) -> None:
        try:
            with anyio.fail_after(self._send_timeout):
                await stream.send(message)
        except TimeoutError:
            logger.warning("Timed out delivering notification to a client, skipping it")
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.info("Client stream closed, dropping it from notifications")
            self.unregister(stream)
        except Exception:
            logger.exception("Failed to deliver notification to a client")


class NullBroadcaster:
    """Sink for transports that cannot push to clients."""

    supports_push = False

    async def deliver(self, method: str, params: dict[str, Any]) -> None:
        logger.debug(f"Dropping {method} notification, no push-capable transport")
