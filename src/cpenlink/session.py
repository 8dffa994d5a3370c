# MIT License
#
# Copyright (c) 2025 CPen Link Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
BLE session - one live GATT connection and its response listener.

A session moves idle -> connecting -> connected -> idle. While connected it
may hold one ResponseListener: a background task that owns a notification
subscription and feeds incoming values into a bounded queue. The listener
is torn down together with the connection, so a connection never outlives
its listener and a listener never outlives its connection.

Responses are retrieved by subscription when the characteristic supports
notify or indicate, otherwise by a plain read.

Failure mapping:
- link gone before or during an operation -> ConnectionDropped
- operation did not finish in time        -> ProtocolTimeout
- missing service/characteristic, wrong property, overlapping receive
                                          -> ProtocolError
"""

import asyncio
from enum import Enum
from typing import Optional

import RNS
from bleak import BleakClient
from bleak.exc import BleakError

from cpenlink.errors import (
    ConnectFailed,
    ConnectionDropped,
    ProtocolError,
    ProtocolTimeout,
)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ResponseListener:
    """
    Background holder of a notification subscription.

    The subscription is started in ``start()``; a task then keeps it alive
    until ``stop()`` cancels the task, which unsubscribes on its way out.
    Values arrive through the bleak callback and are queued (bounded).

    Args:
        client: Connected BleakClient
        characteristic: Characteristic object to subscribe to
    """

    QUEUE_SIZE = 10
    UNSUBSCRIBE_TIMEOUT = 2.0

    def __init__(self, client, characteristic):
        self.client = client
        self.characteristic = characteristic
        self.queue = asyncio.Queue(maxsize=ResponseListener.QUEUE_SIZE)
        self.task: Optional[asyncio.Task] = None

    @property
    def uuid(self):
        return str(self.characteristic.uuid)

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    async def start(self, timeout: float):
        await asyncio.wait_for(self.client.start_notify(self.characteristic, self._on_notify), timeout=timeout)
        self.task = asyncio.create_task(self._hold())

    async def _hold(self):
        try:
            await asyncio.Event().wait()
        finally:
            if self.client.is_connected:
                try:
                    await asyncio.wait_for(self.client.stop_notify(self.characteristic),
                                           timeout=ResponseListener.UNSUBSCRIBE_TIMEOUT)
                except Exception as e:
                    RNS.log(f"{self} error unsubscribing: {type(e).__name__}: {e}", RNS.LOG_DEBUG)

    def _on_notify(self, sender, data):
        if self.queue.full():
            # Oldest response is the least useful one
            dropped = self.queue.get_nowait()
            RNS.log(f"{self} queue full, dropped {len(dropped)} byte response", RNS.LOG_WARNING)
        self.queue.put_nowait(bytes(data))

    async def get(self, timeout: float) -> bytes:
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def drain(self) -> int:
        count = 0
        while not self.queue.empty():
            self.queue.get_nowait()
            count += 1
        return count

    async def stop(self):
        if self.task is None:
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            RNS.log(f"{self} listener ended with error: {type(e).__name__}: {e}", RNS.LOG_DEBUG)
        self.task = None

    def __str__(self):
        return f"ResponseListener[{self.uuid}]"


class BLESession:
    """
    Exclusive GATT session with a single peripheral.

    Args:
        adapter: Shared BLELinkAdapter the peer was discovered with
        client_factory: Callable building a BleakClient-like object
        connect_timeout: Seconds allowed for link establishment
    """

    WRITE_TIMEOUT = 2.0
    SUBSCRIBE_TIMEOUT = 5.0
    NOTIFY_TIMEOUT = 10.0
    READ_TIMEOUT = 2.0
    DISCONNECT_TIMEOUT = 5.0
    LIVENESS_RECHECK_DELAY = 0.1

    def __init__(self, adapter, client_factory=BleakClient, connect_timeout: float = 10.0):
        self.adapter = adapter
        self.client_factory = client_factory
        self.connect_timeout = connect_timeout

        self.state = SessionState.IDLE
        self.client = None
        self.peer = None
        self.listener: Optional[ResponseListener] = None
        self._receiving = False

    @property
    def listener_armed(self) -> bool:
        return self.listener is not None and self.listener.active

    async def connect(self, peer):
        """
        Establish the link to a scanned peer.

        Any previous connection is torn down first. After the platform
        reports success the link is re-checked once more, since some
        stacks report a connection that drops straight away.

        Args:
            peer: PeerHandle from a scan

        Raises:
            ConnectFailed: Link could not be established or did not stay up
        """
        if self.client is not None:
            await self.disconnect()

        self.state = SessionState.CONNECTING
        RNS.log(f"{self} connecting to {peer.name} ({peer.address})", RNS.LOG_INFO)

        target = peer.device if peer.device is not None else peer.address
        client = self.client_factory(target, timeout=self.connect_timeout,
                                     disconnected_callback=self._on_disconnected)
        try:
            await asyncio.wait_for(client.connect(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            await self._release(client)
            raise ConnectFailed(f"timed out after {self.connect_timeout:.0f}s",
                                operation="connect", target=peer.address) from e
        except Exception as e:
            await self._release(client)
            raise ConnectFailed(f"{type(e).__name__}: {e}", operation="connect", target=peer.address) from e

        await asyncio.sleep(BLESession.LIVENESS_RECHECK_DELAY)
        if not client.is_connected:
            await self._release(client)
            raise ConnectFailed("connected then immediately dropped", operation="connect", target=peer.address)

        self.client = client
        self.peer = peer
        self.state = SessionState.CONNECTED
        RNS.log(f"{self} connected", RNS.LOG_INFO)

    async def _release(self, client):
        # A failed connect never leaves a half-open link behind
        self.state = SessionState.IDLE
        try:
            await asyncio.wait_for(client.disconnect(), timeout=BLESession.DISCONNECT_TIMEOUT)
        except Exception as e:
            RNS.log(f"{self} error releasing failed connection: {type(e).__name__}: {e}", RNS.LOG_DEBUG)

    def is_alive(self) -> bool:
        """Ask the transport, never a cached flag."""
        return self.client is not None and bool(self.client.is_connected)

    def _on_disconnected(self, client):
        RNS.log(f"{self} link reported disconnected", RNS.LOG_INFO)

    def _transport_error(self, operation, target, exc):
        # A transport exception after which the link is gone means the link dropped
        if not self.is_alive():
            return ConnectionDropped(f"{type(exc).__name__}: {exc}", operation=operation, target=target)
        return ProtocolError(f"{type(exc).__name__}: {exc}", operation=operation, target=target)

    def _require_alive(self, operation, target):
        if not self.is_alive():
            raise ConnectionDropped("not connected", operation=operation, target=target)

    def _resolve_characteristic(self, service_uuid, char_uuid, operation):
        try:
            service = self.client.services.get_service(service_uuid)
        except BleakError as e:
            raise self._transport_error(operation, service_uuid, e) from e
        if service is None:
            raise ProtocolError("service not found", operation=operation, target=service_uuid)

        characteristic = service.get_characteristic(char_uuid)
        if characteristic is None:
            raise ProtocolError("characteristic not found", operation=operation, target=char_uuid)
        return characteristic

    @staticmethod
    def _supports_notify(characteristic) -> bool:
        return "notify" in characteristic.properties or "indicate" in characteristic.properties

    async def send(self, service_uuid: str, char_uuid: str, data: bytes):
        """
        Write a command without response.

        Args:
            service_uuid: Service holding the characteristic
            char_uuid: Writable characteristic
            data: Payload

        Raises:
            ConnectionDropped: Link is gone
            ProtocolTimeout: Write did not complete in time
            ProtocolError: Characteristic missing or not writable
        """
        self._require_alive("write", char_uuid)
        characteristic = self._resolve_characteristic(service_uuid, char_uuid, "write")

        props = characteristic.properties
        if "write" not in props and "write-without-response" not in props:
            raise ProtocolError("characteristic not writable", operation="write", target=char_uuid)

        try:
            await asyncio.wait_for(self.client.write_gatt_char(characteristic, data, response=False),
                                   timeout=BLESession.WRITE_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise ProtocolTimeout("write timed out", operation="write", target=char_uuid) from e
        except Exception as e:
            raise self._transport_error("write", char_uuid, e) from e

        RNS.log(f"{self} wrote {len(data)} bytes to {char_uuid}", RNS.LOG_EXTREME)

    async def arm(self, service_uuid: str, char_uuid: str) -> Optional[ResponseListener]:
        """
        Make sure a listener is subscribed to the characteristic.

        An active listener for the same characteristic is reused. Nothing
        is armed for characteristics without notify or indicate.

        Returns:
            ResponseListener or None: The active listener, if any
        """
        self._require_alive("subscribe", char_uuid)
        characteristic = self._resolve_characteristic(service_uuid, char_uuid, "subscribe")
        if not self._supports_notify(characteristic):
            return None

        if self.listener is not None:
            if self.listener.active and self.listener.uuid == str(characteristic.uuid):
                return self.listener
            await self.listener.stop()
            self.listener = None

        listener = ResponseListener(self.client, characteristic)
        try:
            await listener.start(BLESession.SUBSCRIBE_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise ProtocolTimeout("subscribe timed out", operation="subscribe", target=char_uuid) from e
        except Exception as e:
            raise self._transport_error("subscribe", char_uuid, e) from e

        self.listener = listener
        RNS.log(f"{self} listening for notifications on {char_uuid}", RNS.LOG_DEBUG)
        return listener

    def drain(self) -> int:
        """Discard responses queued before the next command is written."""
        if self.listener is None:
            return 0
        count = self.listener.drain()
        if count:
            RNS.log(f"{self} discarded {count} stale response(s)", RNS.LOG_DEBUG)
        return count

    async def receive(self, service_uuid: str, char_uuid: str, timeout: Optional[float] = None) -> bytes:
        """
        Wait for the next response from the characteristic.

        Args:
            service_uuid: Service holding the characteristic
            char_uuid: Characteristic to read or listen on
            timeout: Seconds to wait for a notification (default 10)

        Returns:
            bytes: Raw response

        Raises:
            ProtocolError: Another receive is already waiting on this session
            ProtocolTimeout: Nothing arrived in time
            ConnectionDropped: Link is gone
        """
        if self._receiving:
            raise ProtocolError("receive already in progress", operation="receive", target=char_uuid)

        self._receiving = True
        try:
            self._require_alive("receive", char_uuid)
            characteristic = self._resolve_characteristic(service_uuid, char_uuid, "receive")

            if self._supports_notify(characteristic):
                listener = await self.arm(service_uuid, char_uuid)
                wait = timeout if timeout is not None else BLESession.NOTIFY_TIMEOUT
                try:
                    return await listener.get(wait)
                except asyncio.TimeoutError as e:
                    self._require_alive("receive", char_uuid)
                    raise ProtocolTimeout(f"no notification within {wait:.1f}s",
                                          operation="receive", target=char_uuid) from e

            try:
                data = await asyncio.wait_for(self.client.read_gatt_char(characteristic),
                                              timeout=BLESession.READ_TIMEOUT)
            except asyncio.TimeoutError as e:
                raise ProtocolTimeout("read timed out", operation="read", target=char_uuid) from e
            except Exception as e:
                raise self._transport_error("read", char_uuid, e) from e
            return bytes(data)
        finally:
            self._receiving = False

    async def disconnect(self):
        """Tear down listener and link. Failures are logged, never raised."""
        if self.listener is not None:
            await self.listener.stop()
            self.listener = None

        if self.client is not None:
            try:
                await asyncio.wait_for(self.client.disconnect(), timeout=BLESession.DISCONNECT_TIMEOUT)
            except Exception as e:
                RNS.log(f"{self} error during disconnect: {type(e).__name__}: {e}", RNS.LOG_WARNING)
            else:
                RNS.log(f"{self} disconnected", RNS.LOG_INFO)

        self.client = None
        self.peer = None
        self.state = SessionState.IDLE

    def __str__(self):
        if self.peer is not None:
            return f"BLESession[{self.peer.address}]"
        return "BLESession[idle]"
