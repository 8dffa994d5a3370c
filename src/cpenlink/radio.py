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
Radio capability - turn the local Bluetooth radio on before scanning.

Two implementations share the RadioCapability interface:

- BlueZRadio sets the ``Powered`` property of the BlueZ adapter over the
  D-Bus system bus (Linux, needs dbus-python from the ``bluez`` extra).
- StackProbeRadio briefly starts and stops a BLE scanner. A scanner that
  starts proves the stack and radio are usable, on any platform bleak
  supports.

The device manager asks the primary capability first and falls back to
the stack probe; only when both fail is the radio reported unavailable.
"""

import asyncio
import sys
from enum import Enum

import RNS
from bleak import BleakScanner
from bleak.exc import BleakError


class RadioState(str, Enum):
    ON = "on"
    UNAVAILABLE = "unavailable"
    DENIED = "denied"


class RadioCapability:
    """Interface for anything that can bring the radio up."""

    async def enable(self) -> RadioState:
        raise NotImplementedError

    def __str__(self):
        return f"{type(self).__name__}"


class BlueZRadio(RadioCapability):
    """
    Power the BlueZ adapter via org.bluez.Adapter1.Powered.

    Args:
        adapter_path: D-Bus object path of the adapter
    """

    ADAPTER_INTERFACE = "org.bluez.Adapter1"
    PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
    DENIED_ERRORS = (
        "org.freedesktop.DBus.Error.AccessDenied",
        "org.bluez.Error.NotAuthorized",
        "org.bluez.Error.NotPermitted",
    )

    def __init__(self, adapter_path: str = "/org/bluez/hci0"):
        self.adapter_path = adapter_path

    async def enable(self) -> RadioState:
        # dbus-python is blocking, keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._power_on)

    def _power_on(self) -> RadioState:
        try:
            import dbus
        except ImportError:
            RNS.log(f"{self} dbus-python not installed, cannot control adapter power", RNS.LOG_DEBUG)
            return RadioState.UNAVAILABLE

        try:
            bus = dbus.SystemBus()
            adapter = bus.get_object("org.bluez", self.adapter_path)
            props = dbus.Interface(adapter, BlueZRadio.PROPERTIES_INTERFACE)

            if bool(props.Get(BlueZRadio.ADAPTER_INTERFACE, "Powered")):
                RNS.log(f"{self} adapter {self.adapter_path} already powered", RNS.LOG_DEBUG)
                return RadioState.ON

            props.Set(BlueZRadio.ADAPTER_INTERFACE, "Powered", dbus.Boolean(True))
            RNS.log(f"{self} powered on adapter {self.adapter_path}", RNS.LOG_INFO)
            return RadioState.ON

        except dbus.exceptions.DBusException as e:
            name = e.get_dbus_name()
            if name in BlueZRadio.DENIED_ERRORS:
                RNS.log(f"{self} not permitted to power adapter: {name}", RNS.LOG_WARNING)
                return RadioState.DENIED
            RNS.log(f"{self} D-Bus error powering adapter: {name}: {e}", RNS.LOG_WARNING)
            return RadioState.UNAVAILABLE


class StackProbeRadio(RadioCapability):
    """
    Check the radio by starting and stopping a scanner.

    Args:
        scanner_factory: Callable returning a BleakScanner-like object
        probe_duration: How long to keep the probe scanner running
    """

    def __init__(self, scanner_factory=BleakScanner, probe_duration: float = 0.1):
        self.scanner_factory = scanner_factory
        self.probe_duration = probe_duration

    async def enable(self) -> RadioState:
        try:
            scanner = self.scanner_factory()
            await scanner.start()
        except (BleakError, OSError) as e:
            RNS.log(f"{self} stack probe failed: {type(e).__name__}: {e}", RNS.LOG_WARNING)
            return RadioState.UNAVAILABLE

        try:
            await asyncio.sleep(self.probe_duration)
        finally:
            try:
                await scanner.stop()
            except (BleakError, OSError) as e:
                RNS.log(f"{self} error stopping probe scanner: {e}", RNS.LOG_DEBUG)

        return RadioState.ON


def select_radio(config, platform=None):
    """
    Choose the primary radio capability for this platform.

    Args:
        config: CPenConfig (``enable_bluez_radio`` is honoured)
        platform: Override for ``sys.platform``

    Returns:
        tuple: (primary, fallback). ``fallback`` is None when the primary
               already is the stack probe.
    """
    platform = platform or sys.platform
    probe = StackProbeRadio()
    if platform.startswith("linux") and config.enable_bluez_radio:
        return BlueZRadio(), probe
    return probe, None
