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

"""Fixed-size chunk arithmetic shared by download and upload."""

CHUNK_SIZE = 4 * 1024 * 1024


def chunk_count(total_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """
    Number of chunks covering total_size bytes.

    An empty file still counts as no chunks here; callers that need at
    least one request (upload) handle that themselves.
    """
    if total_size <= 0:
        return 0
    return (total_size + chunk_size - 1) // chunk_size


def chunk_range(index: int, total_size: int, chunk_size: int = CHUNK_SIZE):
    """
    Inclusive byte range of a chunk.

    Args:
        index: Zero-based chunk index
        total_size: Size of the whole file
        chunk_size: Bytes per chunk

    Returns:
        tuple: (start, end), end inclusive. The last chunk ends at total_size - 1.
    """
    count = chunk_count(total_size, chunk_size)
    if index < 0 or index >= count:
        raise IndexError(f"chunk {index} out of range for {count} chunk(s)")
    start = index * chunk_size
    end = min(start + chunk_size, total_size) - 1
    return start, end


def completed_chunks(local_size: int, total_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """
    Whole chunks already present in a partial local file.

    A trailing partial chunk is not counted and is fetched again.
    """
    return min(local_size, total_size) // chunk_size
