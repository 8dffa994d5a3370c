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
Error taxonomy for the CPen link and transfer engine.

Every failure raised by this package is a CPenError subclass carrying a
closed ErrorKind tag. Callers branch on the class (or on ``error.kind``)
instead of inspecting message text. In particular, a lost link is always
reported as ConnectionDropped, which is the only condition the device
manager treats as recoverable by reconnecting.

Lower layers attach the failing operation and its target (an address,
a UUID, a remote path) and forward; they never decide retry policy.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    RADIO_UNAVAILABLE = "radio_unavailable"
    DISCOVERY_FAILED = "discovery_failed"
    NO_DEVICE_FOUND = "no_device_found"
    CONNECT_FAILED = "connect_failed"
    CONNECTION_DROPPED = "connection_dropped"
    PROTOCOL_TIMEOUT = "protocol_timeout"
    PROTOCOL_ERROR = "protocol_error"
    ENCODING_ERROR = "encoding_error"
    TRANSFER_ERROR = "transfer_error"
    REMOTE_NOT_FOUND = "remote_not_found"
    TRANSFER_CHUNK_FAILED = "transfer_chunk_failed"
    INTEGRITY_MISMATCH = "integrity_mismatch"


class CPenError(Exception):
    """
    Base class for all CPen link and transfer failures.

    Args:
        message: Short human-readable reason
        operation: Name of the failing operation (e.g. "write", "connect")
        target: What the operation acted on (address, UUID, remote path)
    """

    kind = ErrorKind.PROTOCOL_ERROR

    def __init__(self, message: str, operation: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.target = target

    def __str__(self):
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.target:
            parts.append(str(self.target))
        prefix = f"{' '.join(parts)}: " if parts else ""
        # Always a single line for the shell
        return " ".join(f"{prefix}{self.message}".split())


class RadioUnavailable(CPenError):
    """Neither the radio capability nor the stack probe could turn the radio on."""
    kind = ErrorKind.RADIO_UNAVAILABLE


class DiscoveryFailed(CPenError):
    """Scan could not be started or stopped."""
    kind = ErrorKind.DISCOVERY_FAILED


class NoDeviceFound(CPenError):
    """No advertised peer matched the filter."""
    kind = ErrorKind.NO_DEVICE_FOUND


NoMatchingDevice = NoDeviceFound


class ConnectFailed(CPenError):
    """Link establishment failed, or the link dropped immediately after connecting."""
    kind = ErrorKind.CONNECT_FAILED


class ConnectionDropped(CPenError):
    """An established link went away. Recoverable by reconnecting."""
    kind = ErrorKind.CONNECTION_DROPPED


class ProtocolTimeout(CPenError):
    """A write, notification or read did not complete in time."""
    kind = ErrorKind.PROTOCOL_TIMEOUT


class ProtocolError(CPenError):
    """Missing service or characteristic, unsupported property, or an unusable response."""
    kind = ErrorKind.PROTOCOL_ERROR


class EncodingError(CPenError):
    """Response bytes were not valid UTF-8."""
    kind = ErrorKind.ENCODING_ERROR


class TransferError(CPenError):
    """Remote storage request failed."""
    kind = ErrorKind.TRANSFER_ERROR


class RemoteFileNotFound(TransferError):
    kind = ErrorKind.REMOTE_NOT_FOUND


class TransferChunkFailed(TransferError):
    """
    A chunk exhausted its attempt budget.

    Args:
        index: Zero-based chunk index that failed
        message: Reason of the last attempt
    """

    kind = ErrorKind.TRANSFER_CHUNK_FAILED

    def __init__(self, index: int, message: str, operation: Optional[str] = None, target: Optional[str] = None):
        super().__init__(f"chunk {index} failed: {message}", operation=operation, target=target)
        self.index = index


class IntegrityMismatch(TransferError):
    """Completed download length differs from the advertised size."""
    kind = ErrorKind.INTEGRITY_MISMATCH

    def __init__(self, expected: int, actual: int, operation: Optional[str] = None, target: Optional[str] = None):
        super().__init__(f"expected {expected} bytes, got {actual}", operation=operation, target=target)
        self.expected = expected
        self.actual = actual
