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

import requests

from archdrop.Errors import TransientFailureExhausted, TransportTransientError
from archdrop.Kernel import getLogger
from archdrop.Settings import RETRY_BASE_DELAY, RETRY_MAX_ATTEMPTS

logger = getLogger(__name__)

TRANSIENT_ERRORS = (TransportTransientError, requests.RequestException, asyncio.TimeoutError)


def isTransient(error: BaseException) -> bool:
    """Network failures, timeouts and non-success responses. AEAD and protocol errors are not."""
    return isinstance(error, TRANSIENT_ERRORS)


class RetryPolicy:
    """Bounded retries with exponential backoff for a single chunk operation

    The delay after failed attempt k (0-based) is baseDelay * 2**k, so the defaults
    (3 attempts, 1s) wait 1s and then 2s before the final attempt.
    """

    def __init__(
        self, maxAttempts: int = RETRY_MAX_ATTEMPTS, baseDelay: float = RETRY_BASE_DELAY, sleep=None, classifier=None
    ):
        """
        Args:
            maxAttempts: Total attempts, including the first one
            baseDelay: Delay in seconds after the first failure
            sleep: Coroutine function used to wait, asyncio.sleep by default
            classifier: Predicate deciding whether an error is worth retrying, isTransient by default
        """
        if maxAttempts < 1:
            raise ValueError(f"maxAttempts must be at least 1, got {maxAttempts}")

        self.maxAttempts = maxAttempts
        self.baseDelay = baseDelay
        self.sleep = sleep or asyncio.sleep
        self.classifier = classifier or isTransient

    def delayFor(self, attempt: int) -> float:
        return self.baseDelay * (2**attempt)

    async def attempt(self, operation, fileIndex=None, chunkIndex=None):
        """Run operation() until it succeeds, fails permanently, or attempts run out

        Args:
            operation: Callable returning a result or an awaitable
            fileIndex: File the operation belongs to (diagnostics)
            chunkIndex: Chunk the operation belongs to (diagnostics)

        Raises:
            TransientFailureExhausted: After maxAttempts transient failures
        """
        lastError = None

        for attempt in range(self.maxAttempts):
            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if not self.classifier(e):
                    raise

                lastError = e
                logger.warning(
                    f"[Retry] file={fileIndex} chunk={chunkIndex} attempt {attempt + 1}/{self.maxAttempts} "
                    f"failed: {e}"
                )

                if attempt + 1 < self.maxAttempts:
                    await self.sleep(self.delayFor(attempt))

        raise TransientFailureExhausted(
            f"Gave up after {self.maxAttempts} attempts: {lastError}",
            lastError=lastError,
            attempts=self.maxAttempts,
            fileIndex=fileIndex,
            chunkIndex=chunkIndex,
        ) from lastError
