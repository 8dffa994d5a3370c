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
Transfer manager - registry of running and finished transfers.

Each transfer runs as its own asyncio task and owns its own storage
client. The shell never awaits a transfer; it polls snapshots by id.
"""

import asyncio
import os
from typing import Dict

import RNS

from cpenlink.errors import CPenError, TransferError
from cpenlink.transfer.download import DownloadTask
from cpenlink.transfer.models import TransferDirection, TransferProgress, TransferStatus
from cpenlink.transfer.task import TransferTask
from cpenlink.transfer.upload import UploadTask


class TransferManager:
    """
    Starts, tracks, pauses and resumes transfers.

    Args:
        client_factory: Callable returning a new StorageClient
        config: CPenConfig with chunk and retry settings
    """

    def __init__(self, client_factory, config):
        self.client_factory = client_factory
        self.config = config
        self._tasks: Dict[str, TransferTask] = {}
        self._runners: Dict[str, asyncio.Task] = {}

    def _task_options(self):
        return {
            "chunk_size": self.config.chunk_size,
            "max_attempts": self.config.max_chunk_attempts,
            "retry_delay": self.config.chunk_retry_delay,
        }

    def _spawn(self, task: TransferTask):
        runner = self._runners.get(task.transfer_id)
        if runner is not None and not runner.done():
            return
        self._runners[task.transfer_id] = asyncio.create_task(self._run(task))

    async def _run(self, task: TransferTask):
        try:
            await task.start()
        except CPenError as e:
            # Status and reason are already recorded on the task
            RNS.log(f"{self} {task} stopped: {e}", RNS.LOG_DEBUG)
        finally:
            await task.client.stop()

    async def start_download(self, remote_path: str, save_path: str = None) -> DownloadTask:
        """
        Look up a remote file and start downloading it in the background.

        Args:
            remote_path: Path on the storage service
            save_path: Local destination (download_dir/<basename> by default)

        Returns:
            DownloadTask: The registered task

        Raises:
            RemoteFileNotFound: File does not exist remotely
        """
        if save_path is None:
            name = os.path.basename(remote_path.rstrip("/")) or "download.bin"
            save_path = os.path.join(self.config.download_dir, name)

        task = DownloadTask(self.client_factory(), remote_path, save_path, **self._task_options())
        try:
            await task.metadata()
        except CPenError:
            await task.client.stop()
            raise

        self._tasks[task.transfer_id] = task
        self._spawn(task)
        RNS.log(f"{self} started download {task.transfer_id} of {remote_path}", RNS.LOG_INFO)
        return task

    async def start_upload(self, local_path: str, target_path: str = None) -> UploadTask:
        """
        Open an upload session and start sending the file in the background.

        Args:
            local_path: File to upload
            target_path: Optional destination folder on the server

        Returns:
            UploadTask: The registered task
        """
        if not os.path.isfile(local_path):
            raise TransferError("local file not found", operation="upload", target=local_path)

        task = UploadTask(self.client_factory(), local_path, target_path, **self._task_options())
        try:
            await task.init()
        except CPenError:
            await task.client.stop()
            raise

        self._tasks[task.transfer_id] = task
        self._spawn(task)
        RNS.log(f"{self} started upload {task.transfer_id} of {local_path}", RNS.LOG_INFO)
        return task

    def get(self, transfer_id: str, direction: TransferDirection = None) -> TransferTask:
        task = self._tasks.get(transfer_id)
        if task is None or (direction is not None and task.direction != direction):
            raise TransferError("unknown transfer", operation="lookup", target=transfer_id)
        return task

    def progress(self, transfer_id: str, direction: TransferDirection = None) -> TransferProgress:
        return self.get(transfer_id, direction).progress()

    def pause(self, transfer_id: str, direction: TransferDirection = None):
        self.get(transfer_id, direction).pause()

    def resume(self, transfer_id: str, direction: TransferDirection = None):
        """Restart a paused or failed transfer from its persisted state."""
        task = self.get(transfer_id, direction)
        if task.progress().status in (TransferStatus.PAUSED, TransferStatus.ERROR, TransferStatus.PENDING):
            self._spawn(task)

    async def wait(self, transfer_id: str):
        """Wait for the current run of a transfer to end (completed, paused or failed)."""
        runner = self._runners.get(transfer_id)
        if runner is not None:
            await asyncio.shield(runner)

    async def shutdown(self):
        runners = [r for r in self._runners.values() if not r.done()]
        for runner in runners:
            runner.cancel()
        for runner in runners:
            try:
                await runner
            except asyncio.CancelledError:
                pass
        # Runners cancelled before their first step never reached their own cleanup
        for task in self._tasks.values():
            await task.client.stop()
        self._runners.clear()
        RNS.log(f"{self} stopped {len(runners)} running transfer(s)", RNS.LOG_DEBUG)

    def __str__(self):
        return "TransferManager"
