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

from abc import ABC, abstractmethod

from archdrop.Kernel import classForName, getLogger

logger = getLogger(__name__)

GCM_TAG_LENGTH = 16


class CryptoBackend(ABC):
    """Abstract base class for AEAD backends

    Backends raise archdrop.Errors.AuthenticationFailure when a tag does not verify,
    whatever exception their library uses for it.
    """

    @abstractmethod
    def getName(self):
        """Get backend name"""
        pass

    @abstractmethod
    def createAESGCM(self, key):
        """Create a reusable AES-GCM cipher object"""
        pass

    @abstractmethod
    def encryptAESGCM(self, keyOrCipher, plaintext, nonce, aad=None):
        """Encrypt with AES-GCM, returns ciphertext+tag"""
        pass

    @abstractmethod
    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        """Decrypt with AES-GCM, returns plaintext"""
        pass


class CryptoInterface:
    """Main crypto interface with automatic backend selection"""

    BACKENDS = ['cryptography', 'mbedTLS']

    def __init__(self, preferredBackend=None):
        self.backend = self._initializeBackend(preferredBackend)

    @staticmethod
    def _loadBackend(backendName):
        backendModule = f'{backendName[0].upper()}{backendName[1:]}'
        backendClass = classForName(f'archdrop.crypto.{backendModule}.{backendModule}Backend')
        return backendClass()

    def _initializeBackend(self, preferredBackend=None):
        """Initialize crypto backend, the preferred one first and then in priority order"""
        backendList = list(self.BACKENDS)

        if preferredBackend is not None:
            if preferredBackend not in backendList:
                raise ValueError(f"Unknown crypto backend '{preferredBackend}', expected one of {backendList}")
            backendList.remove(preferredBackend)
            backendList.insert(0, preferredBackend)

        for backendName in backendList:
            try:
                return self._loadBackend(backendName)
            except ImportError as e:
                if backendName == preferredBackend:
                    logger.warning(f"[CRYPTO] Requested backend '{preferredBackend}' not available: {e}")
                else:
                    logger.debug(f"[CRYPTO] Failed to load crypto backend {backendName}: {e}")

        raise RuntimeError("No crypto backend available - please install 'cryptography' or 'python-mbedtls'")

    def getBackendName(self):
        return self.backend.getName()

    def __getattr__(self, name):
        # Delegate any undefined method to backend
        return getattr(self.backend, name)
