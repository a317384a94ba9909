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
import hmac

from dataclasses import dataclass
from typing import Optional

from archdrop.Errors import IntegrityMismatch
from archdrop.Kernel import getLogger
from archdrop.Utils import ONE_MB

logger = getLogger(__name__)

EMPTY_DIGEST = hashlib.sha256(b'').hexdigest()


def hashFile(path: str, blockSize: int = ONE_MB) -> str:
    """SHA-256 hex digest of a file, read in blocks"""
    hasher = hashlib.sha256()
    with open(path, 'rb') as f:
        for block in iter(lambda: f.read(blockSize), b''):
            hasher.update(block)
    return hasher.hexdigest()


@dataclass
class TransferResult:
    """Outcome of one file transfer

    `verified` is only set by IntegrityVerifier.verifyResult().
    """
    fileIndex: Optional[int]
    name: Optional[str]
    size: int
    digest: str
    data: Optional[bytes] = None
    path: Optional[str] = None
    expectedDigest: Optional[str] = None
    verified: bool = False


class IntegrityVerifier:
    """Whole file SHA-256 check, run after every chunk passed AEAD verification"""

    @staticmethod
    def digest(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def verify(actualDigest: str, expectedDigest: str, fileIndex=None, fileName=None):
        """
        Raises:
            IntegrityMismatch: If the digests differ
        """
        actual = actualDigest.strip().lower()
        expected = expectedDigest.strip().lower()

        if not hmac.compare_digest(actual.encode('ascii'), expected.encode('ascii')):
            raise IntegrityMismatch(
                f"Expected sha256 {expected}, got {actual}",
                expected=expected,
                actual=actual,
                fileIndex=fileIndex,
                fileName=fileName,
            )

    def verifyResult(self, result: TransferResult) -> TransferResult:
        if not result.expectedDigest:
            raise ValueError(f"No expected digest to verify {result.name or result.fileIndex} against")

        result.verified = False
        self.verify(result.digest, result.expectedDigest, fileIndex=result.fileIndex, fileName=result.name)
        result.verified = True

        logger.debug(f"[Integrity] {result.name or result.fileIndex}: sha256 verified ({result.size} bytes)")
        return result
