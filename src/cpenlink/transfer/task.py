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
Shared state handling for download and upload tasks.

A task runs on the event loop while the shell may poll it from another
thread, so the status and the byte counters are guarded by a
threading.Lock and only ever read through ``progress()`` snapshots.
"""

import threading
import time
import uuid
from typing import Optional

import RNS

from cpenlink.transfer.chunks import CHUNK_SIZE
from cpenlink.transfer.models import TransferDirection, TransferProgress, TransferStatus


class TransferTask:
    """
    Base class for chunked transfers.

    Args:
        client: StorageClient used for every request
        chunk_size: Bytes per chunk
        max_attempts: Attempts per chunk before giving up
        retry_delay: Base backoff in seconds, multiplied by the attempt number
        transfer_id: Identifier used by the shell to poll this task
    """

    direction = TransferDirection.DOWNLOAD

    def __init__(self, client, chunk_size=CHUNK_SIZE, max_attempts=3, retry_delay=1.0, transfer_id=None):
        self.client = client
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.transfer_id = transfer_id or uuid.uuid4().hex

        self.file_name = ""
        self.remote_path: Optional[str] = None
        self.total_size: Optional[int] = None
        self.chunks_total = 0

        self.lock = threading.Lock()
        self.status = TransferStatus.PENDING
        self.error: Optional[str] = None
        self.transferred = 0
        self.chunks_completed = 0
        self.sha256: Optional[str] = None

        self._pause_requested = False
        self._run_started_at: Optional[float] = None
        self._run_start_bytes = 0

    def pause(self):
        """Request a pause. Takes effect before the next chunk starts."""
        with self.lock:
            if self.status in (TransferStatus.PENDING, TransferStatus.ACTIVE):
                self._pause_requested = True
        RNS.log(f"{self} pause requested", RNS.LOG_DEBUG)

    def _begin(self) -> bool:
        with self.lock:
            if self.status in (TransferStatus.ACTIVE, TransferStatus.COMPLETED):
                return False
            if self.status != TransferStatus.PENDING:
                self._pause_requested = False
            self.status = TransferStatus.ACTIVE
            self.error = None
            return True

    def _pause_point(self) -> bool:
        # Called between chunks only
        with self.lock:
            if self._pause_requested:
                self._pause_requested = False
                self.status = TransferStatus.PAUSED
                paused = True
            else:
                paused = False
        if paused:
            RNS.log(f"{self} paused at {self.transferred} bytes", RNS.LOG_INFO)
        return paused

    def _reset_counters(self, transferred, chunks_completed):
        with self.lock:
            self.transferred = transferred
            self.chunks_completed = chunks_completed
            self._run_started_at = time.monotonic()
            self._run_start_bytes = transferred

    def _advance(self, transferred, chunks_completed):
        with self.lock:
            self.transferred = transferred
            self.chunks_completed = chunks_completed

    def _complete(self):
        with self.lock:
            self.status = TransferStatus.COMPLETED
        RNS.log(f"{self} completed ({self.transferred} bytes)", RNS.LOG_INFO)

    def _fail(self, reason: str):
        with self.lock:
            self.status = TransferStatus.ERROR
            self.error = reason
        RNS.log(f"{self} failed: {reason}", RNS.LOG_ERROR)

    def _mark_interrupted(self):
        with self.lock:
            if self.status == TransferStatus.ACTIVE:
                self.status = TransferStatus.PAUSED

    def progress(self) -> TransferProgress:
        with self.lock:
            total = self.total_size or 0
            speed = 0.0
            if self.status == TransferStatus.ACTIVE and self._run_started_at is not None:
                elapsed = time.monotonic() - self._run_started_at
                if elapsed > 0:
                    speed = (self.transferred - self._run_start_bytes) / 1024.0 / elapsed
            if total > 0:
                percent = self.transferred * 100.0 / total
            else:
                percent = 100.0 if self.status == TransferStatus.COMPLETED else 0.0

            return TransferProgress(
                transfer_id=self.transfer_id,
                direction=self.direction,
                file_name=self.file_name,
                remote_path=self.remote_path,
                total_size=total,
                transferred=self.transferred,
                status=self.status,
                error=self.error,
                chunks_total=self.chunks_total,
                chunks_completed=self.chunks_completed,
                speed_kbps=round(speed, 2),
                percent=round(percent, 2),
                sha256=self.sha256,
            )

    def __str__(self):
        return f"{type(self).__name__}[{self.file_name or self.transfer_id[:8]}]"
