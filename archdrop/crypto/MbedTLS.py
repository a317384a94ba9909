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

from mbedtls import cipher
from mbedtls.exceptions import TLSError

from archdrop.Errors import AuthenticationFailure
from archdrop.Kernel import getLogger
from archdrop.crypto import CryptoBackend, GCM_TAG_LENGTH

logger = getLogger(__name__)


class MbedTLSBackend(CryptoBackend):
    """Python-mbedtls backend implementation"""

    def __init__(self):
        self.cipher = cipher

    def getName(self):
        return "python-mbedtls"

    def createAESGCM(self, key):
        # MbedTLS binds the nonce when the cipher is created, so the key itself is the reusable object
        return bytes(key)

    def encryptAESGCM(self, keyOrCipher, plaintext, nonce, aad=None):
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        aesCipher = self.cipher.AES.new(bytes(keyOrCipher), self.cipher.MODE_GCM, nonce, aad or b'')

        # mbedtls encrypt() returns (ciphertext, tag)
        ciphertext, tag = aesCipher.encrypt(plaintext)
        return ciphertext + tag

    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        if len(ciphertextWithTag) < GCM_TAG_LENGTH:
            raise AuthenticationFailure(f"Ciphertext too short for GCM tag: {len(ciphertextWithTag)} bytes")

        data = bytes(ciphertextWithTag)
        aesCipher = self.cipher.AES.new(bytes(keyOrCipher), self.cipher.MODE_GCM, nonce, aad or b'')

        try:
            return aesCipher.decrypt(data[:-GCM_TAG_LENGTH], data[-GCM_TAG_LENGTH:])
        except TLSError:
            raise AuthenticationFailure("GCM tag mismatch")
