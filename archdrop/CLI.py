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

import argparse
import json
import os
import logging
import logging.config
import platform
import sys

import qrcode

from archdrop.Kernel import LOG_LEVEL_MAPPING, StorageLocator, configureGlobalLogLevel, getLogger
from archdrop.Settings import MAX_CONCURRENT_CHUNKS, TRANSFER_CHUNK_SIZE, SettingsGetter
from archdrop.Utils import flushPrint, getEnv

logger = getLogger(__name__)

COMMAND_NAMES = ('send', 'receive', 'stream-send', 'stream-receive')


def loadEnvFile():
    """
    Load KEY=VALUE lines from the .env file found by StorageLocator into os.environ.
    Variables already set in the environment win.

    Returns:
        int: Number of variables loaded
    """
    envFilePath = StorageLocator.getInstance().findConfig('.env')
    if not os.path.exists(envFilePath):
        return 0

    loadedCount = 0
    with open(envFilePath, 'r', encoding='utf-8') as f:
        for lineNum, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            key, sep, value = line.partition('=')
            key = key.strip()
            value = value.strip()
            if not sep or not key:
                logger.warning(f".env line {lineNum}: Invalid format: {line}")
                continue

            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]

            if key in os.environ:
                logger.debug(f".env: Skipped {key} (already set in environment)")
                continue

            os.environ[key] = value
            loadedCount += 1

    logger.debug(f"Loaded {loadedCount} environment variables from {envFilePath}")
    return loadedCount


def configureLogging(logLevel):
    """Configure logging from --log-level, or ARCHDROP_LOGGING_LEVEL when it is not given

    The value is a level name (DEBUG, INFO, WARNING, ERROR) or the path of a JSON
    logging.config.dictConfig file.
    """

    def suppressNoisyLogger():
        logging.getLogger('urllib3').setLevel(logging.INFO)
        logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('ARCHDROP_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                logging.config.dictConfig(json.load(configFile))
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel
        except (json.JSONDecodeError, ValueError, KeyError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    level = LOG_LEVEL_MAPPING.get(logLevel.upper())
    if level is None:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        level = logging.WARNING

    configureGlobalLogLevel(level)
    suppressNoisyLogger()
    return logLevel


def showVersion():
    flushPrint(f"ArchDrop v{SettingsGetter.getInstance().version}")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine}")
    flushPrint(f"Support: {SettingsGetter.getInstance().getSupportURL()}")


def validatePositive(fieldName):

    def validate(valueStr):
        try:
            value = int(valueStr)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid {fieldName.lower()} value: {valueStr}")

        if value <= 0:
            raise argparse.ArgumentTypeError(f"{fieldName} must be positive, got {value}")
        return value

    return validate


def configureCLIParser():
    """Build the argument parser

    Returns:
        tuple: (parser, globalsParent)
    """
    globalsParent = argparse.ArgumentParser(add_help=False)
    globalsParent.add_argument(
        '--log-level', dest='logLevel', default=None,
        help='Logging level (DEBUG, INFO, WARNING, ERROR) or a JSON logging config file'
    )
    globalsParent.add_argument(
        '--chunk-size', dest='chunkSize', type=validatePositive('Chunk size'), default=TRANSFER_CHUNK_SIZE,
        help=f'Plaintext bytes per chunk (default: {TRANSFER_CHUNK_SIZE})'
    )
    globalsParent.add_argument(
        '--concurrency', type=validatePositive('Concurrency'), default=MAX_CONCURRENT_CHUNKS,
        help=f'Chunks in flight per file (default: {MAX_CONCURRENT_CHUNKS})'
    )
    globalsParent.add_argument('--version', action='store_true', help='Show version information and exit')

    parser = argparse.ArgumentParser(
        prog='archdrop',
        description='End-to-end encrypted file transfer through a relay',
        parents=[globalsParent],
    )
    subparsers = parser.add_subparsers(dest='command')

    def addTarget(subparser):
        subparser.add_argument('--url', help='Share URL with the key fragment (#key=...)')
        subparser.add_argument('--server', help='Relay base URL, used with --token when no --url is given')
        subparser.add_argument('--token', help='Transfer token on the relay')

    sendParser = subparsers.add_parser('send', help='Upload files into a receive session on the relay')
    sendParser.add_argument('paths', nargs='+', help='Files or folders to send')
    sendParser.add_argument('--atomic', action='store_true', help='Stop at the first failed file')
    addTarget(sendParser)

    receiveParser = subparsers.add_parser('receive', help='Download the files shared at a URL')
    receiveParser.add_argument('url', help='Share URL with the key fragment')
    receiveParser.add_argument('--output', '-o', default='.', help='Output folder (default: current folder)')
    receiveParser.add_argument('--atomic', action='store_true', help='Stop at the first failed file')

    streamSendParser = subparsers.add_parser('stream-send', help='Upload one payload as a framed stream')
    streamSendParser.add_argument('source', nargs='?', default='-', help="File to send, '-' for stdin (default)")
    addTarget(streamSendParser)

    streamReceiveParser = subparsers.add_parser('stream-receive', help='Download and decrypt a framed stream')
    streamReceiveParser.add_argument('url', help='Share URL with the key and nonce fragment')
    streamReceiveParser.add_argument('--output', '-o', required=True, help='Output file')
    streamReceiveParser.add_argument('--sha256', default=None, help='Expected SHA-256 of the payload')

    return parser, globalsParent


def printQRCode(url, out=None):
    """Render url as a terminal QR code, only when stdout is a terminal unless out is given"""
    if out is None:
        if not sys.stdout.isatty():
            return
        out = sys.stdout

    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)

    # Inverted so the code reads on dark terminal backgrounds
    qr.print_ascii(out=out, invert=True)
    out.flush()
