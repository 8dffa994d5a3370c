"""Chunked, resumable transfers to and from the storage service."""

from cpenlink.transfer.chunks import CHUNK_SIZE, chunk_count, chunk_range
from cpenlink.transfer.client import StorageClient
from cpenlink.transfer.download import DownloadTask
from cpenlink.transfer.manager import TransferManager
from cpenlink.transfer.models import TransferProgress, TransferStatus
from cpenlink.transfer.upload import UploadTask
