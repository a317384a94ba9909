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
import socket
import sys

import bitmath

from urllib3 import PoolManager
from urllib3.connection import HTTPConnection
from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter

from archdrop.Kernel import getLogger
from archdrop.Settings import SettingsGetter

ONE_KB = int(bitmath.KiB(1).bytes)
ONE_MB = int(bitmath.MiB(1).bytes)
ONE_GB = int(bitmath.GiB(1).bytes)
ONE_TB = int(bitmath.TiB(1).bytes)

logger = getLogger(__name__)


def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError as e:
        # Terminals without UTF-8 support (e.g. cp950 consoles)
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}")

        buf = getattr(sys.stdout, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
        else:
            print(''.join(ch if ch.isprintable() else '?' for ch in text), flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB:
            decimal = 0
        elif size < ONE_TB:
            decimal = 1
        else:
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    # best_prefix() picks bits for 0 on some bitmath releases
    if size < ONE_KB:
        return f"{size:.{decimal}f} {'Bytes' if plural else 'Byte'}"

    sizeStr = bitmath.Byte(size).best_prefix(system=bitmath.SI).format(
        "{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit')
    )

    if not sizeStr.endswith('Byte') and not sizeStr.endswith('Bytes') and not sizeStr.endswith('Bits'):
        return sizeStr.replace('B', '').upper()
    else:
        return sizeStr.replace('Byte', ' Byte').replace('Bit', ' Byte')


def sendException(logger, e, action=None, errorPrefix="Oops, something went wrong"):
    if e and errorPrefix:
        flushPrint(f'{errorPrefix}: {e}')
    elif e:
        flushPrint(f'{e}')
    else:
        logger.error(f'Incorrect argument: {errorPrefix=} {e=}')

    flushPrint(action or 'Please try again or try later.')

    supportURL = SettingsGetter.getInstance().getSupportURL()
    flushPrint(f'\nIf you still get the same problem, please report it at {supportURL}.\n')

    logger.exception(e)

    if os.getenv('RAISE_EXCEPTION', 'False') == 'True' and isinstance(e, BaseException):
        raise e


def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            elif isinstance(default, str):
                return str(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default


# Minimum stall timeout in seconds (for both upload and download)
DEFAULT_MIN_STALL_TIMEOUT_SECONDS = getEnv('HTTP_DEFAULT_MIN_STALL_TIMEOUT_SECONDS', 120)

# Minimum speed threshold in MBps for stall calculation
DEFAULT_STALL_SPEED_THRESHOLD_MBPS = getEnv('HTTP_DEFAULT_STALL_SPEED_THRESHOLD_MBPS', 1.0)


class StallResilientAdapter(HTTPAdapter):
    """
    HTTP adapter that detects stalled connections through TCP socket options.

    urllib3 retries are disabled (Retry(total=0)): every chunk request is retried by
    RetryPolicy so that backoff and exhaustion are observable per chunk.
    """

    DEFAULT_SOCKET_OPTIONS = HTTPConnection.default_socket_options

    @classmethod
    def calculateStallTimeoutMs(cls, chunkSize):
        """
        Stall timeout for a chunk size at the minimum acceptable speed.
        Formula: stall = max(DEFAULT_MIN_STALL_TIMEOUT_SECONDS, chunkSize / speedThreshold)

        Returns:
            int: Stall timeout in milliseconds
        """
        speedThresholdBps = DEFAULT_STALL_SPEED_THRESHOLD_MBPS * ONE_MB
        stallTimeoutSeconds = max(DEFAULT_MIN_STALL_TIMEOUT_SECONDS, chunkSize / speedThresholdBps)
        return int(stallTimeoutSeconds * 1000)

    def __init__(self, stallTimeoutMs: int = None, chunkSize: int = None, *args, **kwargs):
        if stallTimeoutMs is None and chunkSize is not None:
            self.stallTimeoutMs = self.calculateStallTimeoutMs(chunkSize)
        elif stallTimeoutMs is not None:
            self.stallTimeoutMs = stallTimeoutMs
        else:
            self.stallTimeoutMs = DEFAULT_MIN_STALL_TIMEOUT_SECONDS * 1000

        self.isLinux = SettingsGetter.getInstance().isLinux()

        kwargs['max_retries'] = Retry(total=0)
        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **kwargs):
        socketOptions = list(self.DEFAULT_SOCKET_OPTIONS)

        # Enable TCP keepalive for early dead connection detection
        socketOptions.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

        if hasattr(socket, "TCP_KEEPIDLE"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 30))
        if hasattr(socket, "TCP_KEEPINTVL"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))
        if hasattr(socket, "TCP_KEEPCNT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3))

        # Linux only: timeout for unacknowledged data
        if self.isLinux and hasattr(socket, "TCP_USER_TIMEOUT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_USER_TIMEOUT, self.stallTimeoutMs))

        kwargs["socket_options"] = socketOptions

        self.poolmanager = PoolManager(num_pools=connections, maxsize=maxsize, block=block, **kwargs)
