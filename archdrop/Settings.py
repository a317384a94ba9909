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
import platform as platformModule

from archdrop.Kernel import PUBLIC_VERSION, Singleton, getLogger

# Plaintext bytes per chunk (1 MiB), ciphertext adds a 16 byte GCM tag
TRANSFER_CHUNK_SIZE = int(os.getenv('TRANSFER_CHUNK_SIZE', 1024 * 1024))

# Chunk transfers in flight per file
MAX_CONCURRENT_CHUNKS = int(os.getenv('MAX_CONCURRENT_CHUNKS', 8))

# Chunk level retry: attempts, and the delay before the 2nd attempt (doubles afterwards)
RETRY_MAX_ATTEMPTS = int(os.getenv('RETRY_MAX_ATTEMPTS', 3))
RETRY_BASE_DELAY = float(os.getenv('RETRY_BASE_DELAY', 1.0))

# Per request timeout (connect, read) in seconds
HTTP_CONNECT_TIMEOUT = float(os.getenv('HTTP_CONNECT_TIMEOUT', 10.0))
HTTP_READ_TIMEOUT = float(os.getenv('HTTP_READ_TIMEOUT', 60.0))

SUPPORT_URL = 'https://github.com/archdrop/archdrop/discussions'

logger = getLogger(__name__)


class SettingsGetter(Singleton):
    """Process wide settings that depend on the runtime environment"""

    def initialize(self, platform=None):
        self._platform = platform or platformModule.system()

    @property
    def version(self):
        return PUBLIC_VERSION

    def isLinux(self):
        return self._platform == "Linux"

    def getSupportURL(self):
        return SUPPORT_URL
