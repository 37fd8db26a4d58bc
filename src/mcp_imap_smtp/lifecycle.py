"""
Client Lifecycle
================

Reference counting of connected clients for multi-client (HTTP) mode. The
poller runs while at least one client is connected.
"""

from __future__ import annotations

import asyncio
import logging

from contracts import NewMailPollerContract

logger = logging.getLogger("mcp-imap-smtp.lifecycle")


class ClientTracker:
    """
    Starts the poller on the first connect and stops it on the last
    disconnect. The count update and the start/stop decision run as one
    critical section, so bursts of connects or disconnects cannot both
    observe the edge.
    """

    def __init__(self, poller: NewMailPollerContract | None = None) -> None:
        self._poller = poller
        self._count = 0
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return self._count

    async def on_client_connected(self) -> None:
        async with self._lock:
            self._count += 1
            logger.info(f"Client connected (total: {self._count})")
            if self._count == 1 and self._poller is not None:
                await self._poller.start()

    async def on_client_disconnected(self) -> None:
        async with self._lock:
            if self._count == 0:
                logger.warning("Client disconnected with no clients tracked, ignoring")
                return
            self._count -= 1
            logger.info(f"Client disconnected (total: {self._count})")
            if self._count == 0 and self._poller is not None:
                self._poller.stop()
