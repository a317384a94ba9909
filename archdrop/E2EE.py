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
import struct

from typing import Optional

from archdrop.crypto import CryptoInterface, GCM_TAG_LENGTH
from archdrop.Errors import AuthenticationFailure, NonceReuseError, ProtocolViolation
from archdrop.Kernel import getLogger
from archdrop.Settings import TRANSFER_CHUNK_SIZE

logger = getLogger(__name__)

KEY_LENGTH = 32 # AES-256
NONCE_BASE_LENGTH = 7
NONCE_LENGTH = 12
TAG_LENGTH = GCM_TAG_LENGTH
FRAME_HEADER_SIZE = 4
MAX_CHUNK_INDEX = 2**32 - 1


def generateKey() -> bytes:
    return os.urandom(KEY_LENGTH)


def generateNonceBase() -> bytes:
    """Fresh random nonce base, one per file (or per stream)"""
    return os.urandom(NONCE_BASE_LENGTH)


# ============================================================================
# Nonce schedule
# ============================================================================


class NonceSchedule:
    """STREAM style nonces: a per file base plus the chunk counter

    Nonce format: base(7) || chunkIndex(4 bytes BE) || reserved(1) = 12 bytes

    The reserved byte is always 0, including for the last chunk of a file.
    """

    RESERVED = 0

    @staticmethod
    def nonceFor(nonceBase: bytes, chunkIndex: int) -> bytes:
        """Build the 12-byte AES-GCM nonce for a chunk

        Args:
            nonceBase: 7-byte per file nonce base
            chunkIndex: Chunk index (0-based)

        Returns:
            12-byte nonce

        Raises:
            ValueError: If the base is not 7 bytes or the index does not fit in 32 bits
        """
        if len(nonceBase) != NONCE_BASE_LENGTH:
            raise ValueError(f"Nonce base must be {NONCE_BASE_LENGTH} bytes, got {len(nonceBase)}")

        if not 0 <= chunkIndex <= MAX_CHUNK_INDEX:
            raise ValueError(f"Chunk index out of range: {chunkIndex}")

        return bytes(nonceBase) + struct.pack("!IB", chunkIndex, NonceSchedule.RESERVED)


# ============================================================================
# Chunk cipher
# ============================================================================


class ChunkCipher:
    """Encrypts and decrypts the chunks of one file

    Every chunk is sealed independently with AES-256-GCM under the nonce derived from its
    index, no AAD. The key is shared read-only, so one instance may serve concurrent chunks.
    """

    def __init__(self, contentKey: bytes, nonceBase: bytes, crypto: Optional[CryptoInterface] = None):
        """Initialize chunk cipher

        Args:
            contentKey: AES-256 content key (32 bytes)
            nonceBase: Nonce base (7 bytes)
            crypto: CryptoInterface to use, a default one is created when omitted
        """
        if len(contentKey) != KEY_LENGTH:
            raise ValueError(f"Content key must be {KEY_LENGTH} bytes, got {len(contentKey)}")
        if len(nonceBase) != NONCE_BASE_LENGTH:
            raise ValueError(f"Nonce base must be {NONCE_BASE_LENGTH} bytes, got {len(nonceBase)}")

        self.nonceBase = bytes(nonceBase)
        self.crypto = crypto or CryptoInterface()
        self.aesgcm = self.crypto.createAESGCM(bytes(contentKey))

        self.sealedIndices = set()

    def encryptChunk(self, chunkIndex: int, plaintext: bytes) -> bytes:
        """Encrypt a chunk

        Returns:
            ciphertext || tag

        Raises:
            NonceReuseError: If this chunk index was already encrypted by this cipher
        """
        if chunkIndex in self.sealedIndices:
            raise NonceReuseError(f"Chunk {chunkIndex} was already encrypted with this nonce base",
                                  chunkIndex=chunkIndex)

        nonce = NonceSchedule.nonceFor(self.nonceBase, chunkIndex)
        self.sealedIndices.add(chunkIndex)

        return self.crypto.encryptAESGCM(self.aesgcm, plaintext, nonce)

    def decryptChunk(self, chunkIndex: int, data: bytes) -> bytes:
        """Decrypt and authenticate a chunk

        Raises:
            AuthenticationFailure: If the tag does not verify (never retried)
        """
        nonce = NonceSchedule.nonceFor(self.nonceBase, chunkIndex)

        try:
            return self.crypto.decryptAESGCM(self.aesgcm, nonce, data)
        except AuthenticationFailure as e:
            logger.error(f"[E2EE] decryptChunk: authentication failed for chunk {chunkIndex} "
                         f"({len(data)} bytes)")
            e.chunkIndex = chunkIndex
            raise


# ============================================================================
# Framed stream
# ============================================================================


class FrameEncoder:
    """Frames for the continuous stream mode

    Frame format:
    | Length(4, uint32 BE) | Ciphertext || Tag (Length bytes) |
    """

    @staticmethod
    def packFrame(payload: bytes) -> bytes:
        return struct.pack("!I", len(payload)) + payload


class FrameDecoder:
    """Reassembles frames from arbitrarily split network reads"""

    def __init__(self, maxPayloadLength: int):
        self.maxPayloadLength = maxPayloadLength
        self.buffer = bytearray()

    def _checkLength(self, length):
        if length < TAG_LENGTH or length > self.maxPayloadLength:
            raise ProtocolViolation(
                f"Malformed frame length {length} (expected {TAG_LENGTH}..{self.maxPayloadLength})"
            )

    def feed(self, data: bytes) -> list:
        """Accumulate data and return every payload that is now complete"""
        self.buffer += data
        payloads = []

        while len(self.buffer) >= FRAME_HEADER_SIZE:
            length = struct.unpack("!I", self.buffer[:FRAME_HEADER_SIZE])[0]
            self._checkLength(length)

            frameSize = FRAME_HEADER_SIZE + length
            if len(self.buffer) < frameSize:
                break

            payloads.append(bytes(self.buffer[FRAME_HEADER_SIZE:frameSize]))
            del self.buffer[:frameSize]

        return payloads

    def flush(self):
        """Check for leftovers at end of stream

        Raises:
            ProtocolViolation: If an incomplete frame remains (truncation)
        """
        if self.buffer:
            raise ProtocolViolation(
                f"Incomplete frame at end-of-stream: {len(self.buffer)} bytes remaining. "
                f"Data may be truncated."
            )


class StreamEncryptor:
    """Encrypts a sequential stream into frames, chunk counter starting at 0"""

    def __init__(self, contentKey: bytes, nonceBase: bytes, chunkSize: int = TRANSFER_CHUNK_SIZE, crypto=None):
        self.cipher = ChunkCipher(contentKey, nonceBase, crypto)
        self.chunkSize = chunkSize
        self.chunkIndex = 0

    def encryptChunk(self, plaintext: bytes) -> bytes:
        if len(plaintext) > self.chunkSize:
            raise ValueError(f"Chunk of {len(plaintext)} bytes exceeds chunk size {self.chunkSize}")

        frame = FrameEncoder.packFrame(self.cipher.encryptChunk(self.chunkIndex, plaintext))
        self.chunkIndex += 1
        return frame


class StreamDecryptor:
    """Decrypts frames of a sequential stream in order"""

    def __init__(self, contentKey: bytes, nonceBase: bytes, chunkSize: int = TRANSFER_CHUNK_SIZE, crypto=None):
        self.cipher = ChunkCipher(contentKey, nonceBase, crypto)
        self.decoder = FrameDecoder(chunkSize + TAG_LENGTH)
        self.chunkIndex = 0

    def processChunk(self, data: bytes) -> bytes:
        """Accumulate network data and decrypt complete frames

        Returns:
            Decrypted plaintext data (may be empty if no frame is complete yet)
        """
        plaintext = b''
        for payload in self.decoder.feed(data):
            plaintext += self.cipher.decryptChunk(self.chunkIndex, payload)
            self.chunkIndex += 1
        return plaintext

    def flush(self):
        self.decoder.flush()
        logger.debug(f"[E2EE] Stream complete: {self.chunkIndex} frames decrypted")
