"""
Tests for BLESession: connect verification, writes, notification and read
response paths, listener lifecycle and error mapping.
"""

import asyncio

import pytest

from cpenlink.errors import ConnectFailed, ConnectionDropped, ProtocolError, ProtocolTimeout
from cpenlink.link_adapter import BLELinkAdapter, PeerHandle
from cpenlink.session import BLESession, SessionState

from mock_ble_driver import CHAR_UUID, SERVICE_UUID, FakePen


def make_session(pen):
    return BLESession(BLELinkAdapter(), client_factory=pen.client_factory, connect_timeout=1)


def peer_of(pen):
    return PeerHandle(name=pen.name, address=pen.address, device=object())


# ============================================================================
# Connect / disconnect
# ============================================================================

class TestConnect:
    """Link establishment and teardown."""

    @pytest.mark.asyncio
    async def test_connect_sets_state(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        assert session.state == SessionState.CONNECTED
        assert session.is_alive()
        assert session.peer.address == fake_pen.address

    @pytest.mark.asyncio
    async def test_connect_failure(self, fake_pen):
        fake_pen.fail_connect = True
        session = make_session(fake_pen)

        with pytest.raises(ConnectFailed):
            await session.connect(peer_of(fake_pen))
        assert session.state == SessionState.IDLE
        assert session.client is None

    @pytest.mark.asyncio
    async def test_connect_then_immediate_drop(self, fake_pen):
        """A link that is gone right after connect is reported as a failed connect."""
        fake_pen.drop_after_connect = True
        session = make_session(fake_pen)

        with pytest.raises(ConnectFailed, match="immediately dropped"):
            await session.connect(peer_of(fake_pen))
        assert not session.is_alive()
        # The half-open client is released, not just forgotten
        assert fake_pen.clients[0].disconnect_calls == 1
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_connect_timeout_releases_client(self, fake_pen):
        session = BLESession(BLELinkAdapter(), client_factory=fake_pen.client_factory, connect_timeout=0.01)
        client = fake_pen.client_factory(fake_pen.address)

        async def stuck(**kwargs):
            await asyncio.sleep(1)
        client.connect = stuck
        session.client_factory = lambda target, **kwargs: client

        with pytest.raises(ConnectFailed, match="timed out"):
            await session.connect(peer_of(fake_pen))
        assert client.disconnect_calls == 1
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_failed_connect_release_error_is_swallowed(self, fake_pen):
        fake_pen.fail_connect = True
        session = make_session(fake_pen)
        client = fake_pen.client_factory(fake_pen.address)

        async def broken():
            raise RuntimeError("adapter gone")
        client.disconnect = broken
        session.client_factory = lambda target, **kwargs: client

        with pytest.raises(ConnectFailed, match="was not found"):
            await session.connect(peer_of(fake_pen))
        assert session.client is None

    @pytest.mark.asyncio
    async def test_reconnect_tears_down_previous(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        first = session.client

        await session.connect(peer_of(fake_pen))

        assert first.disconnect_calls == 1
        assert session.client is not first

    @pytest.mark.asyncio
    async def test_is_alive_queries_transport(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        fake_pen.drop()

        assert session.state == SessionState.CONNECTED
        assert not session.is_alive()

    @pytest.mark.asyncio
    async def test_disconnect_stops_listener(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        await session.arm(SERVICE_UUID, CHAR_UUID)
        client = session.client
        assert session.listener_armed

        await session.disconnect()

        assert session.listener is None
        assert client.stop_notify_calls == 1
        assert session.state == SessionState.IDLE
        assert session.client is None

    @pytest.mark.asyncio
    async def test_disconnect_never_raises(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        async def broken():
            raise RuntimeError("adapter gone")
        session.client.disconnect = broken

        await session.disconnect()
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_disconnect_when_idle(self, fake_pen):
        session = make_session(fake_pen)
        await session.disconnect()
        assert session.state == SessionState.IDLE


# ============================================================================
# Send
# ============================================================================

class TestSend:
    """Command writes."""

    @pytest.mark.asyncio
    async def test_send_writes_command(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        await session.send(SERVICE_UUID, CHAR_UUID, b"getId")
        assert fake_pen.writes == ["getId"]

    @pytest.mark.asyncio
    async def test_send_when_not_connected(self, fake_pen):
        session = make_session(fake_pen)
        with pytest.raises(ConnectionDropped):
            await session.send(SERVICE_UUID, CHAR_UUID, b"getId")

    @pytest.mark.asyncio
    async def test_send_to_missing_service(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        with pytest.raises(ProtocolError, match="service not found"):
            await session.send("00000000-0000-0000-0000-000000000000", CHAR_UUID, b"getId")

    @pytest.mark.asyncio
    async def test_send_to_missing_characteristic(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        with pytest.raises(ProtocolError, match="characteristic not found"):
            await session.send(SERVICE_UUID, "00000000-0000-0000-0000-000000000000", b"getId")

    @pytest.mark.asyncio
    async def test_send_to_read_only_characteristic(self):
        pen = FakePen(properties=("read", "notify"))
        session = make_session(pen)
        await session.connect(peer_of(pen))
        with pytest.raises(ProtocolError, match="not writable"):
            await session.send(SERVICE_UUID, CHAR_UUID, b"getId")

    @pytest.mark.asyncio
    async def test_link_lost_during_write(self, fake_pen):
        """A transport failure that leaves the link down is a ConnectionDropped."""
        fake_pen.drop_on_write.append("getId")
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        with pytest.raises(ConnectionDropped):
            await session.send(SERVICE_UUID, CHAR_UUID, b"getId")

    @pytest.mark.asyncio
    async def test_write_timeout(self, fake_pen, monkeypatch):
        monkeypatch.setattr(BLESession, "WRITE_TIMEOUT", 0.01)
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        async def stuck(*args, **kwargs):
            await asyncio.sleep(1)
        session.client.write_gatt_char = stuck

        with pytest.raises(ProtocolTimeout):
            await session.send(SERVICE_UUID, CHAR_UUID, b"getId")


# ============================================================================
# Receive
# ============================================================================

class TestReceive:
    """Notification path, read fallback and listener reuse."""

    @pytest.mark.asyncio
    async def test_notification_response(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        await session.arm(SERVICE_UUID, CHAR_UUID)

        await session.send(SERVICE_UUID, CHAR_UUID, b"getTotp")
        data = await session.receive(SERVICE_UUID, CHAR_UUID, timeout=1)

        assert data == b"123456"

    @pytest.mark.asyncio
    async def test_listener_reused(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))

        for command, expected in ((b"getTotp", b"123456"), (b"getId", b"CPEN-0001-ID")):
            await session.arm(SERVICE_UUID, CHAR_UUID)
            await session.send(SERVICE_UUID, CHAR_UUID, command)
            assert await session.receive(SERVICE_UUID, CHAR_UUID, timeout=1) == expected

        assert session.client.start_notify_calls == 1

    @pytest.mark.asyncio
    async def test_notification_timeout(self, fake_pen):
        fake_pen.silent.add("getTotp")
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        await session.arm(SERVICE_UUID, CHAR_UUID)

        await session.send(SERVICE_UUID, CHAR_UUID, b"getTotp")
        with pytest.raises(ProtocolTimeout):
            await session.receive(SERVICE_UUID, CHAR_UUID, timeout=0.05)

    @pytest.mark.asyncio
    async def test_read_fallback(self):
        """Without notify the response is read back from the characteristic."""
        pen = FakePen(properties=("write", "read"))
        session = make_session(pen)
        await session.connect(peer_of(pen))

        assert await session.arm(SERVICE_UUID, CHAR_UUID) is None
        await session.send(SERVICE_UUID, CHAR_UUID, b"getId")
        data = await session.receive(SERVICE_UUID, CHAR_UUID)

        assert data == b"CPEN-0001-ID"
        assert not session.listener_armed

    @pytest.mark.asyncio
    async def test_drain_discards_stale_responses(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        listener = await session.arm(SERVICE_UUID, CHAR_UUID)

        listener._on_notify(None, bytearray(b"stale"))
        assert session.drain() == 1

        await session.send(SERVICE_UUID, CHAR_UUID, b"getId")
        assert await session.receive(SERVICE_UUID, CHAR_UUID, timeout=1) == b"CPEN-0001-ID"

    @pytest.mark.asyncio
    async def test_queue_is_bounded(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        listener = await session.arm(SERVICE_UUID, CHAR_UUID)

        for i in range(15):
            listener._on_notify(None, bytearray(f"r{i}".encode()))

        assert listener.queue.qsize() == listener.QUEUE_SIZE
        assert listener.queue.get_nowait() == b"r5"

    @pytest.mark.asyncio
    async def test_concurrent_receive_rejected(self, fake_pen):
        """A second receive while one is waiting fails instead of stealing the response."""
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        await session.arm(SERVICE_UUID, CHAR_UUID)

        first = asyncio.create_task(session.receive(SERVICE_UUID, CHAR_UUID, timeout=1))
        await asyncio.sleep(0)

        with pytest.raises(ProtocolError, match="already in progress"):
            await session.receive(SERVICE_UUID, CHAR_UUID, timeout=1)

        await session.send(SERVICE_UUID, CHAR_UUID, b"getTotp")
        assert await first == b"123456"

    @pytest.mark.asyncio
    async def test_receive_after_drop(self, fake_pen):
        session = make_session(fake_pen)
        await session.connect(peer_of(fake_pen))
        await session.arm(SERVICE_UUID, CHAR_UUID)

        fake_pen.drop()

        with pytest.raises(ConnectionDropped):
            await session.receive(SERVICE_UUID, CHAR_UUID, timeout=0.05)
