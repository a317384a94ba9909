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
import inspect

from typing import Any, Awaitable, Callable, Iterable, Optional

from archdrop.Kernel import getLogger
from archdrop.Settings import MAX_CONCURRENT_CHUNKS

logger = getLogger(__name__)


class BoundedScheduler:
    """Runs one coroutine per item with at most `limit` of them in flight

    A new item is admitted as soon as any running one finishes, so a slow chunk never holds
    back the others. Items are pulled from the iterable only when a slot is free.

    Results are integrated one at a time through onResult(item, result), in completion
    order, and returned in item order. The first failure stops admission, the work already
    running is drained and its results discarded, then the failure is raised.
    """

    def __init__(self, limit: int = MAX_CONCURRENT_CHUNKS):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}")

        self.limit = limit
        self.inFlight = 0
        self.peakInFlight = 0

    async def run(
        self,
        items: Iterable[Any],
        worker: Callable[[Any], Awaitable[Any]],
        onResult: Optional[Callable[[Any, Any], Any]] = None
    ) -> list:
        semaphore = asyncio.Semaphore(self.limit)
        integrationLock = asyncio.Lock()
        tasks = []
        results = {}
        state = {'failure': None}

        async def runOne(position, item):
            try:
                self.inFlight += 1
                self.peakInFlight = max(self.peakInFlight, self.inFlight)
                try:
                    result = await worker(item)
                finally:
                    self.inFlight -= 1

                async with integrationLock:
                    if state['failure'] is not None:
                        return

                    if onResult is not None:
                        outcome = onResult(item, result)
                        if inspect.isawaitable(outcome):
                            await outcome

                    results[position] = result
            except Exception as e:
                if state['failure'] is None:
                    state['failure'] = e
                    logger.debug(f"[Scheduler] Item {position} failed, stop admitting: {e!r}")
            finally:
                semaphore.release()

        iterator = iter(items)
        position = 0

        while True:
            await semaphore.acquire()

            if state['failure'] is not None:
                semaphore.release()
                break

            try:
                item = next(iterator)
            except StopIteration:
                semaphore.release()
                break

            tasks.append(asyncio.ensure_future(runOne(position, item)))
            position += 1

        if tasks:
            # runOne records failures instead of raising, gather only returns after the drain
            await asyncio.gather(*tasks)

        if state['failure'] is not None:
            raise state['failure']

        return [results[i] for i in range(position)]
