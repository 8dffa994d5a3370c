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
CPenApp - composition root and the operations exposed to the shell.

One CPenApp owns one device manager and one transfer manager; nothing in
the package is a module-level singleton. Every operation returns a
CommandResult instead of raising, so the shell only ever sees a success
flag with data, or a single-line error and its kind.
"""

from typing import Any, Optional

import RNS
from pydantic import BaseModel

from cpenlink.auth import AuthInfo
from cpenlink.config import CPenConfig, configure_logging
from cpenlink.device_manager import CPenDeviceManager
from cpenlink.errors import CPenError
from cpenlink.transfer.client import StorageClient
from cpenlink.transfer.manager import TransferManager
from cpenlink.transfer.models import TransferDirection


class CommandResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    kind: Optional[str] = None


class CPenApp:
    """
    Wires configuration, device manager and transfers together.

    Args:
        config: CPenConfig (defaults plus environment overrides when None)
        device_manager: Pre-built CPenDeviceManager, mainly for tests
        client_factory: Callable returning a StorageClient, mainly for tests
    """

    def __init__(self, config: CPenConfig = None, device_manager: CPenDeviceManager = None, client_factory=None):
        self.config = config if config is not None else CPenConfig()
        configure_logging(self.config)

        self.device_manager = device_manager if device_manager is not None else CPenDeviceManager(self.config)
        self.transfers = TransferManager(client_factory or self._storage_client, self.config)

    def _storage_client(self) -> StorageClient:
        return StorageClient(self.config.endpoint, self.current_auth, timeout=self.config.http_timeout)

    async def current_auth(self) -> AuthInfo:
        """Fresh bearer credential from the pen (served from cache when possible)."""
        device_id = await self.device_manager.get_device_id()
        totp = await self.device_manager.get_totp()
        return AuthInfo(device_id=device_id, totp=totp)

    async def _call(self, operation, awaitable) -> CommandResult:
        try:
            return CommandResult(success=True, data=await awaitable)
        except CPenError as e:
            RNS.log(f"{self} {operation} failed: {e}", RNS.LOG_ERROR)
            return CommandResult(success=False, error=str(e), kind=e.kind.value)

    # ------------------------------------------------------------------
    # Pen
    # ------------------------------------------------------------------

    async def get_code(self) -> CommandResult:
        return await self._call("get_code", self.device_manager.get_totp())

    async def get_device_id(self) -> CommandResult:
        return await self._call("get_device_id", self.device_manager.get_device_id())

    async def get_connection_status(self) -> CommandResult:
        status = self.device_manager.get_connection_status()
        return CommandResult(success=True, data=status.model_dump(mode="json"))

    async def is_connected(self) -> CommandResult:
        return await self._call("is_connected", self.device_manager.is_connected())

    async def disconnect(self) -> CommandResult:
        await self.device_manager.disconnect()
        return CommandResult(success=True, data="Disconnected")

    async def cleanup(self) -> CommandResult:
        """Stop running transfers and release the pen."""
        await self.transfers.shutdown()
        await self.device_manager.disconnect()
        RNS.log(f"{self} cleaned up", RNS.LOG_INFO)
        return CommandResult(success=True, data="Cleaned up")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def _start_download(self, path):
        task = await self.transfers.start_download(path)
        return task.transfer_id

    async def _start_upload(self, path, target):
        task = await self.transfers.start_upload(path, target)
        return task.transfer_id

    async def _snapshot(self, transfer_id, direction):
        return self.transfers.progress(transfer_id, direction).model_dump(mode="json")

    async def _pause(self, transfer_id, direction):
        self.transfers.pause(transfer_id, direction)
        return transfer_id

    async def _resume(self, transfer_id, direction):
        self.transfers.resume(transfer_id, direction)
        return transfer_id

    async def start_download(self, path: str) -> CommandResult:
        return await self._call("start_download", self._start_download(path))

    async def poll_download_progress(self, transfer_id: str) -> CommandResult:
        return await self._call("poll_download_progress", self._snapshot(transfer_id, TransferDirection.DOWNLOAD))

    async def pause_download(self, transfer_id: str) -> CommandResult:
        return await self._call("pause_download", self._pause(transfer_id, TransferDirection.DOWNLOAD))

    async def resume_download(self, transfer_id: str) -> CommandResult:
        return await self._call("resume_download", self._resume(transfer_id, TransferDirection.DOWNLOAD))

    async def start_upload(self, path: str, target: Optional[str] = None) -> CommandResult:
        return await self._call("start_upload", self._start_upload(path, target))

    async def poll_upload_progress(self, transfer_id: str) -> CommandResult:
        return await self._call("poll_upload_progress", self._snapshot(transfer_id, TransferDirection.UPLOAD))

    async def pause_upload(self, transfer_id: str) -> CommandResult:
        return await self._call("pause_upload", self._pause(transfer_id, TransferDirection.UPLOAD))

    async def resume_upload(self, transfer_id: str) -> CommandResult:
        return await self._call("resume_upload", self._resume(transfer_id, TransferDirection.UPLOAD))

    def __str__(self):
        return "CPenApp"
