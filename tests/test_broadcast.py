"""
Broadcaster Tests
=================

Verify SessionBroadcaster against the Broadcaster contract.
"""

import anyio
import pytest

from contracts import Broadcaster
from src.mcp_imap_smtp.broadcast import NullBroadcaster, SessionBroadcaster

pytestmark = pytest.mark.anyio

PARAMS = {
    "email_id": "13",
    "from": "Alice <alice@example.com>",
    "subject": "Hi",
    "received_at": "2026-01-13T10:00:00+00:00",
    "preview": "Hello there",
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


def open_stream(size=10):
    return anyio.create_memory_object_stream(size)


class TestSessionBroadcaster:

    def test_satisfies_contract(self):
        assert isinstance(SessionBroadcaster(), Broadcaster)
        assert isinstance(NullBroadcaster(), Broadcaster)

    async def test_deliver_reaches_all_subscribers(self):
        """
        Contract: Broadcaster
        Enforces: POST-BROADCAST-01
        """
        broadcaster = SessionBroadcaster()
        first_send, first_receive = open_stream()
        second_send, second_receive = open_stream()
        broadcaster.register(first_send)
        broadcaster.register(second_send)

        await broadcaster.deliver("new_email", PARAMS)

        for receive in (first_receive, second_receive):
            notification = receive.receive_nowait().message.root
            assert notification.jsonrpc == "2.0"
            assert notification.method == "new_email"
            assert notification.params == PARAMS

    async def test_failing_subscriber_isolated(self):
        """
        Contract: Broadcaster
        Enforces: INV-BROADCAST-01, INV-BROADCAST-02
        Adversarial: True
        """
        broadcaster = SessionBroadcaster(send_timeout=0.05)

        closed_send, _closed_receive = open_stream()
        closed_send.close()
        broken_send, broken_receive = open_stream()
        broken_receive.close()
        stalled_send, _stalled_receive = open_stream(0)
        healthy_send, healthy_receive = open_stream()

        for stream in (closed_send, broken_send, stalled_send, healthy_send):
            broadcaster.register(stream)

        await broadcaster.deliver("new_email", PARAMS)

        assert healthy_receive.receive_nowait().message.root.params == PARAMS
        # closed streams are dropped, a stalled one is kept for the next event
        assert broadcaster.subscriber_count == 2

    async def test_unregister(self):
        broadcaster = SessionBroadcaster()
        send, receive = open_stream()
        broadcaster.register(send)
        broadcaster.register(send)
        assert broadcaster.subscriber_count == 1

        broadcaster.unregister(send)
        await broadcaster.deliver("new_email", PARAMS)

        assert broadcaster.subscriber_count == 0
        with pytest.raises(anyio.WouldBlock):
            receive.receive_nowait()

    async def test_null_broadcaster_never_raises(self):
        broadcaster = NullBroadcaster()
        assert broadcaster.supports_push is False
        await broadcaster.deliver("new_email", PARAMS)
