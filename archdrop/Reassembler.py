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

import hashlib
import os

from abc import ABC, abstractmethod
from typing import Optional

from archdrop.Errors import OutputError, ProtocolViolation
from archdrop.Kernel import getLogger

logger = getLogger(__name__)


class ChunkSink(ABC):
    """Destination for reassembled plaintext, written strictly in order"""

    @abstractmethod
    def write(self, data: bytes):
        pass

    @abstractmethod
    def commit(self) -> Optional[str]:
        """Release the output as complete and trustworthy"""
        pass

    @abstractmethod
    def abort(self):
        """Discard everything written so far"""
        pass


class MemorySink(ChunkSink):

    def __init__(self):
        self.buffer = bytearray()
        self.committed = False
        self.aborted = False

    def write(self, data: bytes):
        self.buffer += data

    def getvalue(self) -> bytes:
        return bytes(self.buffer)

    def commit(self):
        self.committed = True
        return None

    def abort(self):
        self.buffer.clear()
        self.aborted = True


class FileSink(ChunkSink):
    """Writes to `<path>.part`, renamed over `path` only on commit

    A failed or aborted transfer never leaves a file at `path`. Local I/O failures are
    raised as OutputError so they stay confined to the file being written.
    """

    PART_SUFFIX = '.part'

    def __init__(self, path: str):
        self.path = path
        self.partPath = path + self.PART_SUFFIX
        self.committed = False
        self.aborted = False

        try:
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
            self.fp = open(self.partPath, 'wb')
        except OSError as e:
            raise OutputError(f"Cannot create {self.partPath}: {e}") from e

    def write(self, data: bytes):
        try:
            self.fp.write(data)
        except OSError as e:
            raise OutputError(f"Cannot write {self.partPath}: {e}") from e

    def commit(self) -> str:
        if self.aborted:
            raise RuntimeError(f"Cannot commit aborted output: {self.path}")

        try:
            self.fp.close()
            os.replace(self.partPath, self.path)
        except OSError as e:
            raise OutputError(f"Cannot move {self.partPath} to {self.path}: {e}") from e
        self.committed = True

        logger.debug(f"[FileSink] Committed {self.path}")
        return self.path

    def abort(self):
        if self.committed or self.aborted:
            return

        self.aborted = True
        self.fp.close()

        if os.path.exists(self.partPath):
            os.remove(self.partPath)
            logger.debug(f"[FileSink] Removed partial file {self.partPath}")


class Reassembler:
    """Collects decrypted chunks by index, in any arrival order

    Memory mode (no sink) keeps one slot per index and joins them in finish(). Sink mode
    writes the contiguous prefix to the sink as soon as it is available and hashes the same
    bytes, chunks that arrive early wait until the prefix reaches them.
    """

    def __init__(self, totalChunks: int, sink: Optional[ChunkSink] = None):
        if totalChunks < 0:
            raise ValueError(f"totalChunks must not be negative, got {totalChunks}")

        self.totalChunks = totalChunks
        self.sink = sink

        self.slots = {}
        self.received = set()
        self.nextIndex = 0
        self.bytesFlushed = 0
        self.hasher = hashlib.sha256()

    @property
    def complete(self) -> bool:
        return len(self.received) == self.totalChunks

    @property
    def receivedCount(self) -> int:
        return len(self.received)

    def accept(self, index: int, chunk: bytes):
        if not 0 <= index < self.totalChunks:
            raise ProtocolViolation(f"Chunk index {index} out of range [0, {self.totalChunks})", chunkIndex=index)

        if index in self.received:
            raise ProtocolViolation(f"Duplicate chunk {index}", chunkIndex=index)

        self.received.add(index)
        self.slots[index] = chunk

        if self.sink is not None:
            self._flushPrefix()

    def _flushPrefix(self):
        while self.nextIndex in self.slots:
            data = self.slots.pop(self.nextIndex)
            self.sink.write(data)
            self.hasher.update(data)
            self.bytesFlushed += len(data)
            self.nextIndex += 1

    def finish(self) -> tuple:
        """
        Returns:
            tuple: (data, sha256 hex digest), data is None in sink mode

        Raises:
            ProtocolViolation: If any chunk is still missing
        """
        if not self.complete:
            missing = self.totalChunks - len(self.received)
            raise ProtocolViolation(f"Reassembly incomplete: {missing} of {self.totalChunks} chunks missing")

        if self.sink is not None:
            return None, self.hasher.hexdigest()

        data = b''.join(self.slots[i] for i in range(self.totalChunks))
        self.slots.clear()
        return data, hashlib.sha256(data).hexdigest()

    def abort(self):
        self.slots.clear()
        if self.sink is not None:
            self.sink.abort()
