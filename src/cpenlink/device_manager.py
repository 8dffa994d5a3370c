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
CPen device manager - the single authenticated link to the pen.

Holds at most one session at a time and hands out the pen's credentials
through two caches. Every mutating public call runs under one asyncio
lock, so a credential fetch, a reconnect and a disconnect never
interleave.

Algorithm Design Decisions:
---------------------------
1. Single session: a recorded address marks "connected". It is trusted
   only after the session confirms the link is alive; otherwise it is
   cleared and a fresh scan/connect runs.

2. Radio first: the primary radio capability is asked to turn the radio
   on. If it fails or refuses, a stack probe gets a second chance. Only
   when both fail is the radio reported unavailable.

3. Targeted reconnect: after a drop, the previously used pen is looked up
   by address with a short scan before falling back to a full scan.

4. Retry policy: only ConnectionDropped is retried. The manager waits,
   drops the session, reconnects and replays the command, up to
   ``max_command_retries`` times. Anything else propagates untouched.

5. Ordering: the response listener is armed and its queue drained before
   each command is written, so a late response to an earlier command is
   never taken as the answer to the next one.
"""

import asyncio
import time
from enum import Enum
from typing import Optional

import RNS
from pydantic import BaseModel

from cpenlink.credentials import CredentialCache, DeviceIdCache
from cpenlink.errors import (
    ConnectionDropped,
    EncodingError,
    NoDeviceFound,
    ProtocolError,
    ProtocolTimeout,
    RadioUnavailable,
)
from cpenlink.link_adapter import BLELinkAdapter
from cpenlink.radio import RadioState, select_radio
from cpenlink.session import BLESession


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionStatus(BaseModel):
    phase: ConnectionPhase
    connected: bool
    device_name: Optional[str] = None
    address: Optional[str] = None
    description: str


def _mask(value: str) -> str:
    if len(value) <= 2:
        return "**"
    return value[:2] + "*" * (len(value) - 2)


class CPenDeviceManager:
    """
    Owner of the pen session and its credential caches.

    Args:
        config: CPenConfig
        adapter: BLELinkAdapter (built from config when None)
        session: BLESession (built from config when None)
        radio: Primary RadioCapability (platform default when None)
        fallback_radio: Stack probe used when the primary fails
        clock: Monotonic clock for the TOTP cache
        wall_clock: Epoch clock for setTime
    """

    CMD_GET_TOTP = "getTotp"
    CMD_GET_ID = "getId"
    CMD_SET_TIME = "setTime:{epoch}"

    RETRY_DELAY = 0.5
    SET_TIME_PAUSE = 0.1
    SET_TIME_ECHO_TIMEOUT = 0.5

    def __init__(self, config, adapter=None, session=None, radio=None, fallback_radio=None,
                 clock=time.monotonic, wall_clock=time.time):
        self.config = config
        self.adapter = adapter if adapter is not None else BLELinkAdapter()
        self.session = session if session is not None else BLESession(self.adapter,
                                                                      connect_timeout=config.connect_timeout)
        if radio is None:
            radio, fallback_radio = select_radio(config)
        self.radio = radio
        self.fallback_radio = fallback_radio
        self.wall_clock = wall_clock

        self.lock = asyncio.Lock()
        self.phase = ConnectionPhase.DISCONNECTED
        self.address: Optional[str] = None
        self.current_peer = None

        self.totp_cache = CredentialCache(config.totp_window, config.totp_refresh_lead, clock)
        self.device_id_cache = DeviceIdCache()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def ensure_connected(self):
        """
        Make sure exactly one live session to a pen exists.

        Raises:
            RadioUnavailable: Radio could not be turned on
            DiscoveryFailed: Scan failed
            NoDeviceFound: No pen advertising
            ConnectFailed: Link establishment failed
        """
        async with self.lock:
            await self._ensure_connected()

    async def _ensure_connected(self):
        await self._ensure_radio()

        if self.address is not None:
            if self.session.is_alive():
                return
            RNS.log(f"{self} recorded link to {self.address} is dead, reconnecting", RNS.LOG_INFO)
            await self._drop_session()

        self.phase = ConnectionPhase.CONNECTING
        try:
            peer = await self._find_pen()
            await self.session.connect(peer)
        except Exception:
            self.phase = ConnectionPhase.DISCONNECTED
            raise

        if self.current_peer is not None and self.current_peer.address != peer.address:
            RNS.log(f"{self} switched from {self.current_peer.address} to {peer.address}, clearing credentials",
                    RNS.LOG_INFO)
            self._clear_caches()

        self.address = peer.address
        self.current_peer = peer
        self.phase = ConnectionPhase.CONNECTED
        RNS.log(f"{self} connected to {peer.name} ({peer.address})", RNS.LOG_NOTICE)

        await asyncio.sleep(self.config.settle_delay)

    async def _ensure_radio(self):
        state = None
        try:
            state = await self.radio.enable()
        except Exception as e:
            RNS.log(f"{self} {self.radio} failed: {type(e).__name__}: {e}", RNS.LOG_WARNING)

        if state != RadioState.ON and self.fallback_radio is not None:
            RNS.log(f"{self} {self.radio} reported {state}, trying {self.fallback_radio}", RNS.LOG_DEBUG)
            try:
                state = await self.fallback_radio.enable()
            except Exception as e:
                RNS.log(f"{self} {self.fallback_radio} failed: {type(e).__name__}: {e}", RNS.LOG_WARNING)
                state = None

        if state != RadioState.ON:
            reason = state.value if state is not None else "error"
            raise RadioUnavailable(f"bluetooth radio {reason}", operation="enable_radio")

    async def _find_pen(self):
        prefix = self.config.device_name_prefix

        if self.current_peer is not None:
            try:
                peer = await self.adapter.resolve(self.current_peer.address, self.config.resolve_duration)
                if peer.matches_prefix(prefix):
                    RNS.log(f"{self} found previous pen {peer.name} again", RNS.LOG_DEBUG)
                    return peer
            except NoDeviceFound:
                RNS.log(f"{self} previous pen {self.current_peer.address} not seen, running full scan",
                        RNS.LOG_DEBUG)

        peers = await self.adapter.scan(self.config.scan_duration)
        pens = [p for p in peers if p.matches_prefix(prefix)]
        if not pens:
            raise NoDeviceFound(f"no device named '{prefix}*' found among {len(peers)} device(s)",
                                operation="scan")

        selected = pens[0]
        for other in pens[1:]:
            RNS.log(f"{self} ignoring additional pen {other.name} ({other.address})", RNS.LOG_INFO)
        return selected

    async def _drop_session(self):
        await self.session.disconnect()
        self.address = None
        self.phase = ConnectionPhase.DISCONNECTED

    def _clear_caches(self):
        self.totp_cache.clear()
        self.device_id_cache.clear()

    # ------------------------------------------------------------------
    # Command exchange
    # ------------------------------------------------------------------

    async def _exchange(self, command: str, timeout: Optional[float] = None) -> bytes:
        svc = self.config.service_uuid
        char = self.config.characteristic_uuid
        await self.session.arm(svc, char)
        self.session.drain()
        await self.session.send(svc, char, command.encode("utf-8"))
        return await self.session.receive(svc, char, timeout)

    async def send_receive_with_retry(self, command: str, max_retries: Optional[int] = None,
                                      timeout: Optional[float] = None) -> bytes:
        """
        Send a command and return its response, reconnecting on link loss.

        Args:
            command: Command text, e.g. "getTotp"
            max_retries: Reconnect attempts after a drop (config default 2)
            timeout: Seconds to wait for the response

        Returns:
            bytes: Raw response
        """
        async with self.lock:
            await self._ensure_connected()
            return await self._send_receive_with_retry(command, max_retries, timeout)

    async def _send_receive_with_retry(self, command, max_retries=None, timeout=None):
        if max_retries is None:
            max_retries = self.config.max_command_retries

        retries = 0
        while True:
            try:
                return await self._exchange(command, timeout)
            except ConnectionDropped as e:
                if retries >= max_retries:
                    RNS.log(f"{self} '{command}' failed after {retries} reconnect(s): {e}", RNS.LOG_ERROR)
                    raise
                retries += 1
                RNS.log(f"{self} link dropped during '{command}', reconnecting ({retries}/{max_retries})",
                        RNS.LOG_WARNING)
                await asyncio.sleep(CPenDeviceManager.RETRY_DELAY)
                await self._drop_session()
                await self._ensure_connected()

    @staticmethod
    def _decode(raw: bytes, command: str) -> str:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError(f"response is not valid UTF-8: {e}", operation=command) from e
        text = text.strip()
        if not text:
            raise ProtocolError("empty response", operation=command)
        return text

    async def _set_time(self):
        svc = self.config.service_uuid
        char = self.config.characteristic_uuid
        command = CPenDeviceManager.CMD_SET_TIME.format(epoch=int(self.wall_clock()))

        await self.session.arm(svc, char)
        self.session.drain()
        await self.session.send(svc, char, command.encode("utf-8"))
        await asyncio.sleep(CPenDeviceManager.SET_TIME_PAUSE)

        try:
            echo = await self.session.receive(svc, char, timeout=CPenDeviceManager.SET_TIME_ECHO_TIMEOUT)
            RNS.log(f"{self} setTime acknowledged ({len(echo)} bytes)", RNS.LOG_DEBUG)
        except (ProtocolTimeout, ConnectionDropped, ProtocolError) as e:
            # The getTotp exchange that follows reconnects if the link is gone
            RNS.log(f"{self} no setTime echo ({e}), continuing", RNS.LOG_DEBUG)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def get_totp(self) -> str:
        """
        Return a one-time code with at least the refresh lead left to live.

        Returns:
            str: TOTP text from the pen
        """
        async with self.lock:
            cached = self.totp_cache.get()
            if cached is not None:
                RNS.log(f"{self} using cached TOTP", RNS.LOG_EXTREME)
                return cached

            await self._ensure_connected()
            await self._set_time()
            raw = await self._send_receive_with_retry(CPenDeviceManager.CMD_GET_TOTP)
            totp = self._decode(raw, CPenDeviceManager.CMD_GET_TOTP)

            self.totp_cache.put(totp)
            RNS.log(f"{self} fetched TOTP {_mask(totp)}", RNS.LOG_VERBOSE)
            return totp

    async def get_device_id(self) -> str:
        """
        Return the pen's identifier, cached until disconnect.

        Returns:
            str: Device identifier text
        """
        async with self.lock:
            cached = self.device_id_cache.get()
            if cached is not None:
                return cached

            await self._ensure_connected()
            raw = await self._send_receive_with_retry(CPenDeviceManager.CMD_GET_ID)
            device_id = self._decode(raw, CPenDeviceManager.CMD_GET_ID)

            self.device_id_cache.put(device_id)
            RNS.log(f"{self} device id {device_id}", RNS.LOG_VERBOSE)
            return device_id

    # ------------------------------------------------------------------
    # Status and teardown
    # ------------------------------------------------------------------

    async def disconnect(self):
        """Forget credentials and close the session. Never raises."""
        async with self.lock:
            self._clear_caches()
            try:
                await self.session.disconnect()
            except Exception as e:
                RNS.log(f"{self} error closing session: {type(e).__name__}: {e}", RNS.LOG_WARNING)
            self.address = None
            self.current_peer = None
            self.phase = ConnectionPhase.DISCONNECTED
            RNS.log(f"{self} disconnected", RNS.LOG_INFO)

    async def is_connected(self) -> bool:
        async with self.lock:
            return self.address is not None and self.session.is_alive()

    def current_device_info(self):
        """
        Returns:
            tuple or None: (name, address) of the connected pen
        """
        if self.address is None or self.current_peer is None:
            return None
        return self.current_peer.name, self.current_peer.address

    def get_connection_status(self) -> ConnectionStatus:
        """
        Snapshot of the connection phase.

        Read without the lock so a status poll never waits behind a
        connection attempt, which is what lets "connecting" be observed.
        """
        phase = self.phase
        info = self.current_device_info()
        if phase == ConnectionPhase.CONNECTED and info is not None and self.session.is_alive():
            name, address = info
            return ConnectionStatus(phase=phase, connected=True, device_name=name, address=address,
                                    description=f"Connected to {name} ({address})")
        if phase == ConnectionPhase.CONNECTING:
            return ConnectionStatus(phase=phase, connected=False, description="Connecting...")
        return ConnectionStatus(phase=ConnectionPhase.DISCONNECTED, connected=False, description="Not connected")

    def __str__(self):
        return "CPenDeviceManager"
