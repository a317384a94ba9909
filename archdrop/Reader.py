#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# ArchDrop - End-to-end encrypted relay file transfer
# Copyright (C) 2025-2026 ArchDrop contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
import sys

from typing import Iterator, NamedTuple, Optional

from archdrop.Kernel import getLogger

logger = getLogger(__name__)


def countChunks(size: int, chunkSize: int) -> int:
    """Number of chunks for a payload: ceil(size / chunkSize), 0 for an empty payload"""
    if chunkSize <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunkSize}")
    if size < 0:
        raise ValueError(f"Size must not be negative, got {size}")

    return (size + chunkSize - 1) // chunkSize


class ChunkSpan(NamedTuple):
    """Byte range of one chunk in a random-access source"""
    index: int
    offset: int
    length: int


class SourceReader:
    """Unified reading interface for chunked transfers"""
    contentName: str  # Display filename
    size: Optional[int]  # Total content length (None if unknown)
    supportsRandomAccess: bool  # Whether chunks can be read by index, out of order

    @property
    def consumed(self) -> bool:
        """Whether the reader has been consumed and cannot be read again"""
        raise NotImplementedError

    @classmethod
    def build(cls, path: str) -> 'SourceReader':
        """
        Factory method to create appropriate SourceReader

        Args:
            path: File path, or "-" for stdin

        Returns:
            SourceReader: Appropriate reader for the path type
        """
        if path == "-":
            return StreamSourceReader()

        return FileSourceReader(path)

    def iterChunks(self, chunkSize: int, start: int = 0) -> Iterator[bytes]:
        """
        Iterate over content in chunks, in order

        Args:
            chunkSize: Size of each chunk in bytes
            start: Index of the first chunk to produce

        Yields:
            bytes: Content chunks, every chunk but the last is exactly chunkSize long
        """
        raise NotImplementedError

    def validateIntegrity(self, storedSize: int, storedMtime: float, raiseOnError: bool = False) -> bool:
        """
        Validate that content hasn't changed since size and mtime were captured

        Returns:
            bool: True if content is unchanged, False otherwise

        Raises:
            RuntimeError: If raiseOnError=True and validation fails
        """
        raise NotImplementedError


class FileSourceReader(SourceReader):
    """Random-access reader for regular files

    Chunks may be read by index in any order and from several threads at once, every
    read opens its own handle.
    """

    def __init__(self, path: str):
        if not os.path.isfile(path):
            raise ValueError(f"Not a file: {path}")

        self.path = path
        self.contentName = os.path.basename(path)
        self.size = os.path.getsize(path)
        self.mtime = os.path.getmtime(path)
        self.supportsRandomAccess = True

    @property
    def consumed(self) -> bool:
        """Files can be read multiple times"""
        return False

    def chunkCount(self, chunkSize: int) -> int:
        return countChunks(self.size, chunkSize)

    def spans(self, chunkSize: int, start: int = 0) -> Iterator[ChunkSpan]:
        """Lazily describe chunks [start, totalChunks) without reading them"""
        for index in range(start, self.chunkCount(chunkSize)):
            offset = index * chunkSize
            yield ChunkSpan(index, offset, min(chunkSize, self.size - offset))

    def readChunk(self, index: int, chunkSize: int) -> bytes:
        """Read one chunk by index"""
        totalChunks = self.chunkCount(chunkSize)
        if not 0 <= index < totalChunks:
            raise IndexError(f"Chunk {index} out of range [0, {totalChunks}) for {self.path}")

        offset = index * chunkSize
        length = min(chunkSize, self.size - offset)

        with open(self.path, "rb") as f:
            f.seek(offset)
            data = f.read(length)

        if len(data) != length:
            raise RuntimeError(f"File size changed: {self.path} (short read at chunk {index})")
        return data

    def iterChunks(self, chunkSize: int, start: int = 0) -> Iterator[bytes]:
        with open(self.path, "rb") as f:
            if start > 0:
                f.seek(start * chunkSize)

            while True:
                chunk = f.read(chunkSize)
                if not chunk:
                    break
                yield chunk

    def validateIntegrity(self, storedSize: int, storedMtime: float, raiseOnError: bool = False) -> bool:
        if not os.path.exists(self.path):
            if raiseOnError:
                raise RuntimeError(f"File no longer exists: {self.path}")
            return False

        if os.path.getsize(self.path) != storedSize:
            if raiseOnError:
                raise RuntimeError(f"File size changed: {self.path}")
            return False

        if os.path.getmtime(self.path) != storedMtime:
            if raiseOnError:
                raise RuntimeError(f"File modified: {self.path}")
            return False

        return True


class StreamSourceReader(SourceReader):
    """
    Sequential reader for a byte stream of unknown length (stdin by default)

    Characteristics:
    - Single-use only
    - Unknown size
    - Chunks are produced strictly in arrival order, no random access
    """

    def __init__(self, stream=None, contentName: str = "stdin"):
        self.stream = stream if stream is not None else sys.stdin.buffer
        self.contentName = contentName
        self.size = None
        self.supportsRandomAccess = False
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def iterChunks(self, chunkSize: int, start: int = 0) -> Iterator[bytes]:
        """
        Iterate over stream chunks. Short reads (pipes, sockets) are accumulated so that only
        the final chunk can be shorter than chunkSize.

        Raises:
            RuntimeError: If start > 0 (streams are not seekable)
            RuntimeError: If the stream has already been consumed
        """
        if start > 0:
            raise RuntimeError("Streams do not support starting from a chunk offset (not seekable)")

        if self._consumed:
            raise RuntimeError("Stream has already been consumed (single-use only)")

        self._consumed = True

        buffer = bytearray()
        totalRead = 0

        while True:
            data = self.stream.read(chunkSize - len(buffer))
            if not data:
                break

            buffer += data
            totalRead += len(data)

            if len(buffer) == chunkSize:
                yield bytes(buffer)
                buffer.clear()

        if buffer:
            yield bytes(buffer)

        logger.debug(f"[StreamSourceReader] Finished reading {totalRead} bytes from {self.contentName}")

    def validateIntegrity(self, storedSize: int, storedMtime: float, raiseOnError: bool = False) -> bool:
        """Streams have no stable metadata, always True"""
        return True
