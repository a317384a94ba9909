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


class TransferError(Exception):
    """Base exception for transfer failures

    Carries the file and chunk the failure belongs to, so callers can render a precise message.
    """

    kind = 'transfer error'

    def __init__(self, message, fileIndex=None, chunkIndex=None, fileName=None):
        super().__init__(message)
        self.message = message
        self.fileIndex = fileIndex
        self.chunkIndex = chunkIndex
        self.fileName = fileName

    def annotate(self, fileIndex=None, fileName=None):
        """Fill in file context that was unknown where the error was raised"""
        if self.fileIndex is None:
            self.fileIndex = fileIndex
        if self.fileName is None:
            self.fileName = fileName
        return self

    def describe(self):
        if self.fileName is not None:
            where = f'"{self.fileName}"'
        elif self.fileIndex is not None:
            where = f'file #{self.fileIndex}'
        else:
            where = 'transfer'

        if self.chunkIndex is not None:
            where += f' (chunk {self.chunkIndex})'

        return f'{where}: {self.kind}: {self.message}'


class TransportTransientError(TransferError):
    """Network error or non-success HTTP response, retried by RetryPolicy"""

    kind = 'transport error'

    def __init__(self, message, statusCode=None, **kwargs):
        super().__init__(message, **kwargs)
        self.statusCode = statusCode


class TransientFailureExhausted(TransferError):
    """A transient failure that survived every retry attempt"""

    kind = 'retries exhausted'

    def __init__(self, message, lastError=None, attempts=0, **kwargs):
        super().__init__(message, **kwargs)
        self.lastError = lastError
        self.attempts = attempts


class AuthenticationFailure(TransferError):
    """AEAD tag mismatch: the chunk was corrupted or tampered with"""

    kind = 'authentication failed'


class IntegrityMismatch(TransferError):
    """Whole file digest differs from the expected digest"""

    kind = 'integrity check failed'

    def __init__(self, message, expected=None, actual=None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class ProtocolViolation(TransferError):
    """Malformed manifest, credentials, frame or chunk sequence"""

    kind = 'protocol violation'


class NonceReuseError(TransferError):
    """Attempt to encrypt twice under the same nonce"""

    kind = 'nonce reuse'


class OutputError(TransferError):
    """Local output could not be created or written"""

    kind = 'output error'
