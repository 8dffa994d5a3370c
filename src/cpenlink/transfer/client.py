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
HTTP client for the remote storage service.

Every request carries the pen credential in the Authorization header. The
credential is obtained from an async provider per request, so a long
transfer always presents a code that is still inside its validity window.

Endpoints:
    HEAD /download/{path}                 size of a remote file
    GET  /download/{path}  (Range)        one byte range
    POST /upload/init                     -> {"upload_id": ...}
    GET  /upload/status/{upload_id}       -> {"uploaded_chunks": [...]}
    POST /upload/chunk?upload_id&index    multipart part "file"
    POST /upload/finish?upload_id&filename&total_chunks[&target_path]
"""

import asyncio
import re
from typing import Awaitable, Callable, Optional
from urllib.parse import quote

import aiohttp
import RNS
from pydantic import ValidationError

from cpenlink.auth import AuthInfo
from cpenlink.errors import RemoteFileNotFound, TransferError
from cpenlink.transfer.models import InitUploadResponse, UploadStatusResponse

_CONTENT_RANGE = re.compile(r"bytes\s+\d+-\d+/(\d+)")


class StorageClient:
    """
    aiohttp wrapper for the storage endpoint.

    Args:
        endpoint: Service root, e.g. "http://localhost:8005"
        auth_provider: Async callable returning a fresh AuthInfo
        timeout: Total timeout per request in seconds
    """

    def __init__(self, endpoint: str, auth_provider: Callable[[], Awaitable[AuthInfo]], timeout: float = 30.0):
        self.endpoint = endpoint.rstrip("/")
        self.auth_provider = auth_provider
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def stop(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _headers(self, extra=None) -> dict:
        auth = await self.auth_provider()
        headers = auth.headers()
        if extra:
            headers.update(extra)
        return headers

    async def _session(self) -> aiohttp.ClientSession:
        if self.session is None:
            await self.start()
        return self.session

    def download_url(self, remote_path: str) -> str:
        return f"{self.endpoint}/download/{quote(remote_path, safe='')}"

    @staticmethod
    async def _check(response, operation, target, accept=()):
        if response.status in accept:
            return
        if response.status == 404:
            raise RemoteFileNotFound("not found on server", operation=operation, target=target)
        if response.status >= 400:
            body = await response.text()
            raise TransferError(f"HTTP {response.status}: {body[:200]}", operation=operation, target=target)

    async def _request(self, method, url, operation, target, handler, accept=(), **kwargs):
        session = await self._session()
        try:
            async with session.request(method, url, **kwargs) as response:
                await self._check(response, operation, target, accept)
                return await handler(response)
        except aiohttp.ClientError as e:
            raise TransferError(f"{type(e).__name__}: {e}", operation=operation, target=target) from e
        except asyncio.TimeoutError as e:
            raise TransferError("request timed out", operation=operation, target=target) from e

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def head(self, remote_path: str) -> Optional[int]:
        """
        Ask for the size of a remote file.

        Returns:
            int or None: Content-Length, or None when the server omits it
                         or does not implement HEAD

        Raises:
            RemoteFileNotFound: Server answered 404
        """
        async def handler(response):
            if response.status == 405:
                return None
            return response.content_length

        return await self._request("HEAD", self.download_url(remote_path), "metadata", remote_path, handler,
                                   accept=(405,), headers=await self._headers(), allow_redirects=True)

    async def probe_size(self, remote_path: str) -> Optional[int]:
        """Learn the size from the Content-Range of a one-byte range request."""
        async def handler(response):
            match = _CONTENT_RANGE.match(response.headers.get("Content-Range", ""))
            if match:
                return int(match.group(1))
            if response.status == 200:
                return response.content_length
            return None

        return await self._request("GET", self.download_url(remote_path), "metadata", remote_path, handler,
                                   headers=await self._headers({"Range": "bytes=0-0"}))

    async def get_range(self, remote_path: str, start: int, end: int) -> bytes:
        """
        Fetch bytes start..end (inclusive).

        Returns:
            bytes: Response body (206, or 200 when the whole file is exactly the range)
        """
        expected = end - start + 1

        async def handler(response):
            if response.status not in (200, 206):
                raise TransferError(f"unexpected HTTP {response.status}", operation="download", target=remote_path)
            length = response.content_length
            if length is not None and length != expected:
                # Do not buffer a whole file sent by a server that ignored Range
                raise TransferError(f"expected {expected} bytes, server sent {length}", operation="download",
                                    target=remote_path)
            return await response.read()

        return await self._request("GET", self.download_url(remote_path), "download", remote_path, handler,
                                   headers=await self._headers({"Range": f"bytes={start}-{end}"}))

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def init_upload(self) -> str:
        async def handler(response):
            try:
                return InitUploadResponse.model_validate(await response.json(content_type=None)).upload_id
            except (ValidationError, ValueError) as e:
                raise TransferError(f"bad init response: {e}", operation="upload_init") from e

        return await self._request("POST", f"{self.endpoint}/upload/init", "upload_init", None, handler,
                                   headers=await self._headers())

    async def upload_status(self, upload_id: str) -> set:
        async def handler(response):
            try:
                status = UploadStatusResponse.model_validate(await response.json(content_type=None))
            except (ValidationError, ValueError) as e:
                raise TransferError(f"bad status response: {e}", operation="upload_status", target=upload_id) from e
            return set(status.uploaded_chunks)

        return await self._request("GET", f"{self.endpoint}/upload/status/{upload_id}", "upload_status",
                                   upload_id, handler, headers=await self._headers())

    async def upload_chunk(self, upload_id: str, index: int, data: bytes):
        form = aiohttp.FormData()
        form.add_field("file", data, filename=f"chunk_{index:04d}", content_type="application/octet-stream")

        async def handler(response):
            return response.status

        await self._request("POST", f"{self.endpoint}/upload/chunk", "upload_chunk", upload_id, handler,
                            headers=await self._headers(), data=form,
                            params={"upload_id": upload_id, "index": str(index)})

    async def finish_upload(self, upload_id: str, filename: str, total_chunks: int,
                            target_path: Optional[str] = None):
        params = {"upload_id": upload_id, "filename": filename, "total_chunks": str(total_chunks)}
        if target_path:
            params["target_path"] = target_path

        async def handler(response):
            if response.content_type == "application/json":
                return await response.json()
            return await response.text()

        result = await self._request("POST", f"{self.endpoint}/upload/finish", "upload_finish", upload_id,
                                     handler, headers=await self._headers(), params=params)
        RNS.log(f"{self} finished upload {upload_id} as {filename}", RNS.LOG_DEBUG)
        return result

    def __str__(self):
        return f"StorageClient[{self.endpoint}]"
