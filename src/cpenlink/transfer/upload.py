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
Resumable multipart upload.

An upload session is opened on the server once (``init``). Each run asks
the server which chunk indices it already holds and sends only the
missing ones, then asks the server to assemble the file. Restarting a
paused or failed task therefore resumes from the server's view of the
upload, never from local bookkeeping.
"""

import asyncio
import os

import RNS

from cpenlink.errors import CPenError, TransferChunkFailed, TransferError
from cpenlink.transfer.chunks import chunk_count, chunk_range
from cpenlink.transfer.models import TransferDirection
from cpenlink.transfer.task import TransferTask


class UploadTask(TransferTask):
    """
    Upload of one local file.

    Args:
        client: StorageClient
        local_path: File to upload
        target_path: Optional destination folder on the server
        **kwargs: chunk_size, max_attempts, retry_delay, transfer_id
    """

    direction = TransferDirection.UPLOAD

    def __init__(self, client, local_path, target_path=None, **kwargs):
        super().__init__(client, **kwargs)
        self.local_path = local_path
        self.target_path = target_path
        self.remote_path = target_path
        self.file_name = os.path.basename(local_path)
        self.upload_id = None
        self.result = None

    async def init(self) -> str:
        """Open an upload session on the server and remember its id."""
        self.upload_id = await self.client.init_upload()
        RNS.log(f"{self} upload session {self.upload_id}", RNS.LOG_DEBUG)
        return self.upload_id

    def _chunk_length(self, index, size):
        if size == 0:
            return 0
        start, end = chunk_range(index, size, self.chunk_size)
        return end - start + 1

    async def start(self):
        """
        Run (or resume) the upload until completion, pause or failure.

        Raises:
            TransferChunkFailed: A chunk failed every attempt
        """
        if not self._begin():
            return

        try:
            await self._run()
        except asyncio.CancelledError:
            self._mark_interrupted()
            raise
        except CPenError as e:
            self._fail(str(e))
            raise
        except OSError as e:
            self._fail(f"{type(e).__name__}: {e}")
            raise TransferError(str(e), operation="read", target=self.local_path) from e

    async def _run(self):
        size = os.path.getsize(self.local_path)
        self.total_size = size
        # An empty file is still sent as one (empty) chunk
        self.chunks_total = max(1, chunk_count(size, self.chunk_size))

        if self.upload_id is None:
            await self.init()

        try:
            accepted = await self.client.upload_status(self.upload_id)
        except TransferError as e:
            RNS.log(f"{self} status query failed, assuming no chunks accepted: {e}", RNS.LOG_WARNING)
            accepted = set()
        accepted = {i for i in accepted if 0 <= i < self.chunks_total}

        sent = sum(self._chunk_length(i, size) for i in accepted)
        self._reset_counters(sent, len(accepted))
        if accepted:
            RNS.log(f"{self} server already holds {len(accepted)}/{self.chunks_total} chunk(s)", RNS.LOG_INFO)

        with open(self.local_path, "rb") as f:
            for index in range(self.chunks_total):
                if index in accepted:
                    continue
                if self._pause_point():
                    return

                length = self._chunk_length(index, size)
                f.seek(index * self.chunk_size)
                data = f.read(length)

                await self._send_chunk(index, data)
                accepted.add(index)
                sent += len(data)
                self._advance(sent, len(accepted))
                RNS.log(f"{self} chunk {index + 1}/{self.chunks_total} accepted", RNS.LOG_EXTREME)

        self.result = await self.client.finish_upload(self.upload_id, self.file_name, self.chunks_total,
                                                      self.target_path)
        self._complete()

    async def _send_chunk(self, index, data):
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.client.upload_chunk(self.upload_id, index, data)
                return
            except TransferError as e:
                last_error = e
                RNS.log(f"{self} chunk {index} attempt {attempt}/{self.max_attempts} failed: {e}",
                        RNS.LOG_WARNING)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)

        raise TransferChunkFailed(index, str(last_error), operation="upload", target=self.upload_id)
