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

import time

from tqdm import tqdm

from archdrop.Kernel import TransferEvent, getLogger
from archdrop.Utils import formatSize

logger = getLogger(__name__)


class BitmathTqdm(tqdm):
    """tqdm bar whose sizes and rates go through formatSize"""

    def __init__(self, *args, sizeFormatter=None, **kwargs):
        self.sizeFormatter = sizeFormatter or formatSize

        kwargs.setdefault(
            'bar_format', '{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
        )
        super().__init__(*args, unit='B', unit_scale=False, **kwargs)

    @property
    def format_dict(self):
        d = super().format_dict

        rate = d.get('rate') or 0
        d['rate_fmt'] = f"{self.sizeFormatter(int(rate))}/sec" if rate > 0 else "0/sec"
        d['n_fmt'] = self.sizeFormatter(d.get('n', 0))

        total = d.get('total')
        d['total_fmt'] = self.sizeFormatter(total) if total is not None else '?'
        return d

    def __bool__(self):
        # tqdm raises for total=None without an iterable
        return hasattr(self, 'n')


class Progress:
    """Byte progress of a transfer, shown as a bar or as periodic log lines"""

    def __init__(self, totalSize, sizeFormatter=None, loggerCallback=print, logInterval=2.0, useBar=False,
                 description="Progress"):
        self.totalSize = totalSize or 0
        self.sizeFormatter = sizeFormatter or formatSize
        self.loggerCallback = loggerCallback
        self.logInterval = logInterval
        self.useBar = useBar

        self.transferred = 0
        self.startTime = time.monotonic()
        self.lastLogTime = self.startTime
        self.lastLogBytes = 0

        self.pbar = None
        if self.useBar:
            # No percentage for unknown sizes (stdin streams)
            if self.totalSize:
                barFormat = '{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]{postfix}'
            else:
                barFormat = '{desc}: {n_fmt} [{elapsed}, {rate_fmt}]{postfix}'

            self.pbar = BitmathTqdm(
                total=self.totalSize or None,
                desc=description,
                sizeFormatter=self.sizeFormatter,
                leave=True,
                ncols=100,
                bar_format=barFormat,
            )

    def update(self, bytesTransferred, forceLog=False, extraText=""):
        """Move to an absolute byte count"""
        increment = bytesTransferred - self.transferred
        self.transferred = bytesTransferred
        now = time.monotonic()

        if self.pbar is not None:
            if increment > 0:
                self.pbar.update(increment)
            self.pbar.set_postfix_str(f" {extraText}" if extraText else "")
            return

        if forceLog or now - self.lastLogTime >= self.logInterval:
            self._logProgress(now, extraText)

    def _logProgress(self, now, extraText):
        elapsed = now - self.lastLogTime
        speed = (self.transferred - self.lastLogBytes) / elapsed if elapsed > 0 else 0

        message = (
            f"Progress: {self.sizeFormatter(self.transferred)}/{self.sizeFormatter(self.totalSize)} "
            f"({self.getPercentage():.2f}%), {self.sizeFormatter(int(speed))}/sec"
        )
        if extraText:
            message += f", {extraText}"
        self.loggerCallback(message)

        self.lastLogTime = now
        self.lastLogBytes = self.transferred

    def getPercentage(self):
        return (self.transferred * 100.0 / self.totalSize) if self.totalSize > 0 else 0

    def getElapsedTime(self):
        return time.monotonic() - self.startTime

    def write(self, text):
        if self.pbar is not None:
            self.pbar.write(text)
        else:
            self.loggerCallback(text)

    def finishBar(self, complete=True):
        """Close the bar, filling it up first when complete"""
        if self.pbar is None:
            return

        try:
            if complete and self.pbar.total:
                remaining = self.pbar.total - self.pbar.n
                if remaining > 0:
                    self.pbar.update(remaining)
            self.pbar.refresh()
            self.pbar.close()
        except (ValueError, AttributeError) as e:
            logger.debug(f"[Progress] Error closing progress bar: {e}")
        finally:
            self.pbar = None

    def __enter__(self):
        return self

    def __exit__(self, excType, excVal, excTb):
        self.finishBar(complete=excType is None)


class TransferProgressReporter:
    """Feeds TransferEvent notifications into a Progress

    Bytes are tracked per file so the total stays right while chunks of one file complete
    out of order. Signals keep weak references, so the reporter must be held by its owner.
    """

    def __init__(self, progress: Progress):
        self.progress = progress
        self.bytesByFile = {}
        self.failedFiles = []

    def onChunkProgress(self, fileIndex=None, fileName=None, completedChunks=0, totalChunks=None,
                        bytesTransferred=0, **kwargs):
        self.bytesByFile[fileIndex] = bytesTransferred

        if totalChunks:
            extraText = f"{fileName or 'stream'} {completedChunks}/{totalChunks}"
        else:
            extraText = f"{fileName or 'stream'} {completedChunks} chunks"
        self.progress.update(sum(self.bytesByFile.values()), extraText=extraText)

    def onFileFailed(self, entry=None, error=None, **kwargs):
        name = entry.relativePath if entry is not None else 'stream'
        self.failedFiles.append(name)
        self.progress.write(f"Failed: {name}: {error}")

    def subscribe(self):
        TransferEvent.chunkProgress.subscribe(self.onChunkProgress)
        TransferEvent.fileFailed.subscribe(self.onFileFailed)
        return self

    def unsubscribe(self):
        TransferEvent.chunkProgress.unsubscribe(self.onChunkProgress)
        TransferEvent.fileFailed.unsubscribe(self.onFileFailed)

    def __enter__(self):
        return self.subscribe()

    def __exit__(self, excType, excVal, excTb):
        self.unsubscribe()
        self.progress.finishBar(complete=excType is None)
