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
Link adapter - discovery of nearby BLE peripherals.

Wraps a bleak scanner: a scan is started, left running for a fixed
duration, then stopped, and every advertiser seen is returned as a
PeerHandle in the order it was first sighted. Start and stop failures
are reported as DiscoveryFailed; this layer never retries.
"""

import asyncio
from typing import List, Optional

import RNS
from bleak import BleakScanner

from cpenlink.errors import DiscoveryFailed, NoDeviceFound


class PeerHandle:
    """
    A peripheral seen during a scan.

    Args:
        name: Advertised local name (or platform name)
        address: Stable platform address (MAC, or UUID on macOS)
        service_uuids: Advertised service UUIDs
        rssi: Signal strength in dBm
        device: Opaque platform device object passed back to connect
    """

    def __init__(self, name, address, service_uuids=None, rssi=None, device=None):
        self.name = name
        self.address = address
        self.service_uuids = list(service_uuids or [])
        self.rssi = rssi
        self.device = device

    def matches_prefix(self, prefix: str) -> bool:
        """
        Case-insensitive comparison of the first len(prefix) characters.

        Args:
            prefix: Expected name prefix (e.g. "cpen")

        Returns:
            bool: True when the name starts with prefix, ignoring case
        """
        if not self.name:
            return False
        return self.name[:len(prefix)].lower() == prefix.lower()

    def __repr__(self):
        return f"PeerHandle({self.address}, {self.name}, RSSI={self.rssi})"


class BLELinkAdapter:
    """
    Scanner front-end producing PeerHandle records.

    Args:
        scanner_factory: Callable returning a BleakScanner-like object
        stop_timeout: Upper bound for stopping a scan
    """

    SCAN_START_TIMEOUT = 5.0
    SCAN_STOP_TIMEOUT = 5.0

    def __init__(self, scanner_factory=BleakScanner, stop_timeout: float = SCAN_STOP_TIMEOUT):
        self.scanner_factory = scanner_factory
        self.stop_timeout = stop_timeout

    async def scan(self, duration: float) -> List[PeerHandle]:
        """
        Scan for advertisers.

        Args:
            duration: Seconds to keep the scanner running

        Returns:
            list: PeerHandle per advertiser, in discovery order

        Raises:
            DiscoveryFailed: The scanner could not be started or stopped
        """
        RNS.log(f"{self} scanning for {duration:.1f}s", RNS.LOG_DEBUG)

        try:
            scanner = self.scanner_factory()
            await asyncio.wait_for(scanner.start(), timeout=BLELinkAdapter.SCAN_START_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise DiscoveryFailed("timed out starting scan", operation="scan") from e
        except Exception as e:
            raise DiscoveryFailed(f"{type(e).__name__}: {e}", operation="scan") from e

        try:
            await asyncio.sleep(duration)
        finally:
            try:
                await asyncio.wait_for(scanner.stop(), timeout=self.stop_timeout)
            except asyncio.TimeoutError as e:
                raise DiscoveryFailed("timed out stopping scan", operation="scan") from e
            except Exception as e:
                raise DiscoveryFailed(f"{type(e).__name__}: {e}", operation="scan") from e

        peers = []
        for address, (device, adv) in scanner.discovered_devices_and_advertisement_data.items():
            name = getattr(adv, "local_name", None) or getattr(device, "name", None) or "Unknown"
            peers.append(PeerHandle(
                name=name,
                address=device.address,
                service_uuids=getattr(adv, "service_uuids", None),
                rssi=getattr(adv, "rssi", None),
                device=device,
            ))

        RNS.log(f"{self} scan found {len(peers)} device(s)", RNS.LOG_DEBUG)
        return peers

    async def resolve(self, address: str, duration: Optional[float] = 2.0) -> PeerHandle:
        """
        Find a specific peer again by address.

        Args:
            address: Address recorded from an earlier scan
            duration: Seconds to scan

        Returns:
            PeerHandle: The matching peer

        Raises:
            NoDeviceFound: The address was not sighted
            DiscoveryFailed: The scan itself failed
        """
        for peer in await self.scan(duration):
            if peer.address.lower() == address.lower():
                return peer
        raise NoDeviceFound("device not advertising", operation="resolve", target=address)

    def __str__(self):
        return "BLELinkAdapter"
