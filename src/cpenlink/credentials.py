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
Credential caches for values read from the pen.

The TOTP is valid for a fixed window (30 s) from the moment it was read.
The cache is refresh-ahead: once a value is older than ``window - lead``
(25 s by default) it is no longer handed out, so a caller never receives
a code that expires while its request is in flight. The device identifier
never changes for a given pen and is kept until disconnect.
"""

import time
from typing import Callable, Optional


class CachedCredential:
    """
    A value read from the pen together with the instant it was captured.

    Args:
        value: Credential text as returned by the pen
        captured_at: Monotonic timestamp of capture
    """

    def __init__(self, value: str, captured_at: float):
        self.value = value
        self.captured_at = captured_at

    def age(self, now: float) -> float:
        return now - self.captured_at

    def __repr__(self):
        return f"CachedCredential(captured_at={self.captured_at:.3f})"


class CredentialCache:
    """
    Refresh-ahead cache for the rotating one-time code.

    Args:
        window: Validity window of a code in seconds
        lead: How long before expiry a code is considered stale
        clock: Monotonic clock, injectable for tests
    """

    def __init__(self, window: float = 30.0, lead: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.lead = lead
        self.clock = clock
        self._entry: Optional[CachedCredential] = None

    def get(self) -> Optional[str]:
        """
        Return the cached code if it is still fresh.

        Returns:
            str or None: The code while its age is below ``window - lead``
        """
        if self._entry is None:
            return None
        if self._entry.age(self.clock()) < self.window - self.lead:
            return self._entry.value
        return None

    def put(self, value: str):
        self._entry = CachedCredential(value, self.clock())

    def clear(self):
        self._entry = None

    @property
    def entry(self) -> Optional[CachedCredential]:
        return self._entry


class DeviceIdCache:
    """Sticky cache for the pen's identifier. Cleared only on disconnect."""

    def __init__(self):
        self._value: Optional[str] = None

    def get(self) -> Optional[str]:
        return self._value

    def put(self, value: str):
        self._value = value

    def clear(self):
        self._value = None
