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

"""Pydantic models for transfer progress and storage responses."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class TransferStatus(str, Enum):
    """All possible states of a transfer task."""
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class TransferDirection(str, Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


class TransferProgress(BaseModel):
    """Point-in-time snapshot of a transfer, safe to hand to the shell."""
    transfer_id: str
    direction: TransferDirection
    file_name: str
    remote_path: Optional[str] = None
    total_size: int = 0
    transferred: int = 0
    status: TransferStatus = TransferStatus.PENDING
    error: Optional[str] = None
    chunks_total: int = 0
    chunks_completed: int = 0
    speed_kbps: float = 0.0
    percent: float = 0.0
    sha256: Optional[str] = None


# --- Storage service responses ---

class InitUploadResponse(BaseModel):
    upload_id: str


class UploadStatusResponse(BaseModel):
    uploaded_chunks: list[int] = []
