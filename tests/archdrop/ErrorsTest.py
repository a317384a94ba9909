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

import unittest

from archdrop.Errors import (
    AuthenticationFailure, IntegrityMismatch, NonceReuseError, OutputError, ProtocolViolation, TransferError,
    TransientFailureExhausted, TransportTransientError
)


class ErrorsTest(unittest.TestCase):

    def testDescribe(self):
        error = AuthenticationFailure("GCM tag mismatch", chunkIndex=3)
        self.assertEqual(error.describe(), 'transfer (chunk 3): authentication failed: GCM tag mismatch')

        error.annotate(fileIndex=1, fileName='movie.bin')
        self.assertEqual(error.describe(), '"movie.bin" (chunk 3): authentication failed: GCM tag mismatch')

    def testAnnotateKeepsKnownContext(self):
        error = ProtocolViolation("bad frame", fileIndex=0, fileName='a')
        self.assertIs(error.annotate(fileIndex=5, fileName='b'), error)
        self.assertEqual((error.fileIndex, error.fileName), (0, 'a'))

    def testDescribeByIndex(self):
        self.assertTrue(IntegrityMismatch("digest", fileIndex=2).describe().startswith('file #2: '))

    def testHierarchy(self):
        for cls in (TransportTransientError, TransientFailureExhausted, AuthenticationFailure, IntegrityMismatch,
                    ProtocolViolation, NonceReuseError, OutputError):
            self.assertTrue(issubclass(cls, TransferError))

    def testOutputErrorDescribe(self):
        error = OutputError("cannot open a/b.part: Not a directory", fileIndex=1, fileName='a/b')
        self.assertEqual(error.describe(), '"a/b": output error: cannot open a/b.part: Not a directory')

    def testExtraFields(self):
        error = TransientFailureExhausted("gave up", lastError=TransportTransientError("503", statusCode=503), attempts=4)
        self.assertEqual((error.attempts, error.lastError.statusCode), (4, 503))

        mismatch = IntegrityMismatch("digest", expected='aa', actual='bb')
        self.assertEqual((mismatch.expected, mismatch.actual), ('aa', 'bb'))


if __name__ == '__main__':
    unittest.main()
