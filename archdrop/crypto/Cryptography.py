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

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from archdrop.Errors import AuthenticationFailure
from archdrop.Kernel import getLogger
from archdrop.crypto import CryptoBackend, GCM_TAG_LENGTH

logger = getLogger(__name__)


class CryptographyBackend(CryptoBackend):
    """Cryptography library backend implementation"""

    def __init__(self):
        self.AESGCM = AESGCM

    def getName(self):
        return "cryptography"

    def createAESGCM(self, key):
        return self.AESGCM(key)

    def _cipher(self, keyOrCipher):
        # Accept either a key (bytes) or pre-created cipher object (AESGCM instance)
        if isinstance(keyOrCipher, self.AESGCM):
            return keyOrCipher
        return self.AESGCM(keyOrCipher)

    def encryptAESGCM(self, keyOrCipher, plaintext, nonce, aad=None):
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        return self._cipher(keyOrCipher).encrypt(nonce, plaintext, aad)

    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        if len(ciphertextWithTag) < GCM_TAG_LENGTH:
            raise AuthenticationFailure(f"Ciphertext too short for GCM tag: {len(ciphertextWithTag)} bytes")

        try:
            return self._cipher(keyOrCipher).decrypt(nonce, bytes(ciphertextWithTag), aad)
        except InvalidTag:
            raise AuthenticationFailure("GCM tag mismatch")
