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
Resumable chunked download.

The remote file is fetched in fixed 4 MiB byte ranges and each chunk is
written at its own offset in the destination file. A restart resumes from
the length of the local file: whole chunks already present are kept, a
trailing partial chunk is cut off and fetched again. After the last chunk
the file length is checked against the advertised size and its SHA-256 is
recorded.
"""

import asyncio
import hashlib
import os

import RNS

from cpenlink.errors import (
    CPenError,
    IntegrityMismatch,
    RemoteFileNotFound,
    TransferChunkFailed,
    TransferError,
)
from cpenlink.transfer.chunks import chunk_count, chunk_range, completed_chunks
from cpenlink.transfer.models import TransferDirection
from cpenlink.transfer.task import TransferTask

HASH_BUFFER_SIZE = 8192


def calculate_file_hash(path) -> str:
    """SHA-256 of a file as lowercase hex."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            block = f.read(HASH_BUFFER_SIZE)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


class DownloadTask(TransferTask):
    """
    Download of one remote file into a local path.

    Args:
        client: StorageClient
        remote_path: Path of the file on the storage service
        save_path: Local destination file
        **kwargs: chunk_size, max_attempts, retry_delay, transfer_id
    """

    direction = TransferDirection.DOWNLOAD

    def __init__(self, client, remote_path, save_path, **kwargs):
        super().__init__(client, **kwargs)
        self.remote_path = remote_path
        self.save_path = save_path
        self.file_name = os.path.basename(save_path)

    async def metadata(self) -> int:
        """
        Learn the size of the remote file.

        Returns:
            int: Size in bytes

        Raises:
            RemoteFileNotFound: File does not exist remotely
            TransferError: Size could not be determined
        """
        size = await self.client.head(self.remote_path)
        if size is None:
            RNS.log(f"{self} no Content-Length on HEAD, probing with a range request", RNS.LOG_DEBUG)
            size = await self.client.probe_size(self.remote_path)
        if size is None:
            raise TransferError("server did not report the file size", operation="metadata",
                                target=self.remote_path)

        self.total_size = size
        self.chunks_total = chunk_count(size, self.chunk_size)
        RNS.log(f"{self} remote size {size} bytes in {self.chunks_total} chunk(s)", RNS.LOG_DEBUG)
        return size

    async def start(self):
        """
        Run (or resume) the download until completion, pause or failure.

        Raises:
            TransferChunkFailed: A chunk failed every attempt
            IntegrityMismatch: Final length differs from the remote size
        """
        if not self._begin():
            return

        try:
            if self.total_size is None:
                await self.metadata()
            await self._run()
        except asyncio.CancelledError:
            self._mark_interrupted()
            raise
        except CPenError as e:
            self._fail(str(e))
            raise
        except OSError as e:
            self._fail(f"{type(e).__name__}: {e}")
            raise TransferError(str(e), operation="write", target=self.save_path) from e

    async def _run(self):
        total = self.total_size
        directory = os.path.dirname(self.save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        exists = os.path.exists(self.save_path)
        local_size = os.path.getsize(self.save_path) if exists else 0

        if exists and local_size == total:
            RNS.log(f"{self} already complete on disk", RNS.LOG_INFO)
            self._reset_counters(total, self.chunks_total)
            await self._finish()
            return

        done = completed_chunks(local_size, total, self.chunk_size)
        offset = done * self.chunk_size
        if done:
            RNS.log(f"{self} resuming at chunk {done}/{self.chunks_total} (offset {offset})", RNS.LOG_INFO)

        with open(self.save_path, "r+b" if exists else "wb") as f:
            f.truncate(offset)
            self._reset_counters(offset, done)

            for index in range(done, self.chunks_total):
                if self._pause_point():
                    return
                start, end = chunk_range(index, total, self.chunk_size)
                data = await self._fetch_chunk(index, start, end)
                f.seek(start)
                f.write(data)
                self._advance(end + 1, index + 1)
                RNS.log(f"{self} chunk {index + 1}/{self.chunks_total} written", RNS.LOG_EXTREME)

        await self._finish()

    async def _fetch_chunk(self, index, start, end) -> bytes:
        expected = end - start + 1
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                data = await self.client.get_range(self.remote_path, start, end)
                if len(data) != expected:
                    raise TransferError(f"expected {expected} bytes, got {len(data)}", operation="download",
                                        target=self.remote_path)
                return data
            except RemoteFileNotFound:
                raise
            except TransferError as e:
                last_error = e
                RNS.log(f"{self} chunk {index} attempt {attempt}/{self.max_attempts} failed: {e}",
                        RNS.LOG_WARNING)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)

        raise TransferChunkFailed(index, str(last_error), operation="download", target=self.remote_path)

    async def _finish(self):
        actual = os.path.getsize(self.save_path)
        if actual != self.total_size:
            raise IntegrityMismatch(self.total_size, actual, operation="verify", target=self.save_path)

        loop = asyncio.get_running_loop()
        digest = await loop.run_in_executor(None, calculate_file_hash, self.save_path)
        with self.lock:
            self.sha256 = digest
        RNS.log(f"{self} sha256 {digest}", RNS.LOG_DEBUG)
        self._complete()
