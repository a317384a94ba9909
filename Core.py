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

import asyncio
import platform
import sys
import os
import argparse
import shlex
import signal

import requests
import certifi

from archdrop.CLI import (
    COMMAND_NAMES, configureCLIParser, configureLogging, loadEnvFile, printQRCode, showVersion
)
from archdrop.Credentials import TransferCredentials
from archdrop.Engine import TransferEngine
from archdrop.Errors import TransferError
from archdrop.Kernel import getLogger
from archdrop.Manifest import Manifest
from archdrop.Progress import Progress, TransferProgressReporter
from archdrop.Reader import SourceReader
from archdrop.Reassembler import FileSink
from archdrop.Settings import SettingsGetter
from archdrop.Transport import HTTPChunkTransport
from archdrop.Utils import flushPrint, formatSize, sendException

logger = getLogger(__name__)


def setupGracefulShutdown():
    """First Ctrl+C raises KeyboardInterrupt so sinks get aborted, a second one exits at once"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            os._exit(130)

        context['shutdownInProgress'] = True
        raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)


def setupSettings():
    loadEnvFile()

    if platform.system().lower() != 'windows':
        os.environ["SSL_CERT_FILE"] = certifi.where()

    return SettingsGetter(platform=platform.system())


settingsGetter = setupSettings()


def resolveCredentials(args, requireNonce=False):
    """Credentials from --url, or fresh ones for --server and --token

    Returns:
        tuple: (credentials, generated)
    """
    if args.url:
        return TransferCredentials.fromURL(args.url, requireNonce=requireNonce), False

    if not args.server or not args.token:
        raise argparse.ArgumentTypeError("Either --url or both --server and --token are required")

    return TransferCredentials.generate(token=args.token, baseURL=args.server, withNonce=requireNonce), True


def createEngine(credentials, globalArgs):
    transport = HTTPChunkTransport(credentials.baseURL, chunkSize=globalArgs.chunkSize)
    return TransferEngine(
        transport, credentials, chunkSize=globalArgs.chunkSize, concurrency=globalArgs.concurrency
    )


def createProgress(totalSize, description):
    return Progress(totalSize, loggerCallback=flushPrint, useBar=sys.stderr.isatty(), description=description)


def reportOutcomes(outcomes):
    failed = [outcome for outcome in outcomes if not outcome.ok]

    for outcome in failed:
        flushPrint(f"Failed: {outcome.error.describe()}")

    flushPrint(f"{len(outcomes) - len(failed)} of {len(outcomes)} files transferred")
    return 1 if failed else 0


def processSend(args, globalArgs):
    credentials, generated = resolveCredentials(args)
    manifest = Manifest.build(args.paths)
    flushPrint(f"Sending {len(manifest)} files ({formatSize(manifest.totalSize)})")

    if generated:
        shareURL = credentials.buildShareURL('receive')
        flushPrint(f"Share this link with the receiver: {shareURL}")
        printQRCode(shareURL)

    with createEngine(credentials, globalArgs) as engine:
        with TransferProgressReporter(createProgress(manifest.totalSize, "Sending")):
            outcomes = asyncio.run(engine.uploadManifest(manifest, atomic=args.atomic))

    return reportOutcomes(outcomes)


def processReceive(args, globalArgs):
    credentials = TransferCredentials.fromURL(args.url)

    with createEngine(credentials, globalArgs) as engine:
        manifest = asyncio.run(engine.fetchManifest())
        flushPrint(f"Receiving {len(manifest)} files ({formatSize(manifest.totalSize)}) into {args.output}")

        with TransferProgressReporter(createProgress(manifest.totalSize, "Receiving")):
            outcomes = asyncio.run(engine.downloadManifest(args.output, manifest, atomic=args.atomic))

    return reportOutcomes(outcomes)


def processStreamSend(args, globalArgs):
    credentials, generated = resolveCredentials(args, requireNonce=True)
    reader = SourceReader.build(args.source)
    shareURL = credentials.buildShareURL('download')

    if generated:
        flushPrint(f"Share this link with the receiver: {shareURL}")
        printQRCode(shareURL)

    with createEngine(credentials, globalArgs) as engine:
        with TransferProgressReporter(createProgress(reader.size or 0, "Sending")):
            result = engine.sendStream(reader)

    flushPrint(f"Sent {formatSize(result.size)}, sha256 {result.digest}")
    # Frames carry no end marker, only the digest reveals a truncated stream
    flushPrint(
        f"Receive and verify with: archdrop stream-receive '{shareURL}' "
        f"-o {shlex.quote(result.name or 'output')} --sha256 {result.digest}"
    )
    return 0


def processStreamReceive(args, globalArgs):
    credentials = TransferCredentials.fromURL(args.url, requireNonce=True)

    with createEngine(credentials, globalArgs) as engine:
        transport = engine.transport
        chunks = transport.openStream(transport.streamURL(credentials.token))

        with TransferProgressReporter(createProgress(0, "Receiving")):
            result = engine.receiveStream(
                chunks, FileSink(args.output), expectedDigest=args.sha256, name=os.path.basename(args.output)
            )

    status = "verified" if result.verified else "not verified"
    flushPrint(f"Received {formatSize(result.size)} into {result.path}, sha256 {result.digest} ({status})")
    return 0


COMMANDS = {
    'send': processSend,
    'receive': processReceive,
    'stream-send': processStreamSend,
    'stream-receive': processStreamReceive,
}


def runCLIMain(argv=None):
    """Parse global options first, then the command with its own arguments"""
    parser, globalsParent = configureCLIParser()
    argv = sys.argv[1:] if argv is None else argv

    globalArgs, rest = globalsParent.parse_known_args(argv)
    configureLogging(globalArgs.logLevel)

    if globalArgs.version:
        showVersion()
        return 0

    if not rest or rest[0] not in COMMAND_NAMES:
        parser.print_help()
        return 0 if not rest else 2

    args = parser.parse_args(rest)

    try:
        return COMMANDS[args.command](args, globalArgs)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except TransferError as e:
        flushPrint(f"Error: {e.describe()}")
        logger.debug(f"[Core] Transfer failed: {e!r}")
        return 1


def main():
    setupGracefulShutdown()

    try:
        return runCLIMain()
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        return 130
    except (requests.exceptions.ConnectionError, ConnectionError):
        sendException(logger, 'Failed to connect server')
        return 1
    except (FileNotFoundError, PermissionError) as e:
        flushPrint(f"Error: {e}")
        return 1
    except Exception as e:
        sendException(logger, e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
