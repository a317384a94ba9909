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

import json
import logging
import os
import tempfile
import unittest

from unittest.mock import patch

from archdrop.Kernel import (
    EventService, EventTiming, SecretGetter, StorageLocator, TransferEvent, classForName, configureGlobalLogLevel,
    getLogger
)


class EventServiceTest(unittest.TestCase):
    """
    Test case for the singleton, signalslot-based EventService.
    """

    def setUp(self):
        self.e = EventService.getInstance()
        self.e.reset()

    def tearDown(self):
        self.e.reset()
        TransferEvent.registerAll()

    def testIsSingleton(self):
        self.assertIs(EventService.getInstance(), EventService.getInstance())
        self.assertIs(self.e, EventService())

    def testSubscribeAndTrigger(self):
        log = []

        def observer1(value=None, **kwargs):
            log.append(('observer1', value))

        def observer2(value=None, **kwargs):
            log.append(('observer2', value))

        self.assertTrue(self.e.register('/test/event'))
        self.assertFalse(self.e.register('/test/event'))

        self.e.subscribe('/test/event', observer1)
        self.e.subscribe('/test/event', observer2)
        self.e.subscribe('/test/event', observer2) # ignored, already connected

        self.e.trigger('/test/event', value=1)
        self.assertEqual(log, [('observer1', 1), ('observer2', 1)])

        self.e.unsubscribe('/test/event', observer2)

        log.clear()
        self.e.trigger('/test/event', value=2)
        self.assertEqual(log, [('observer1', 2)])

    def testTiming(self):
        log = []

        def before(**kwargs):
            log.append('before')

        def after(**kwargs):
            log.append('after')

        self.e.register('/test/timing')
        self.e.subscribe('/test/timing', after)
        self.e.subscribe('/test/timing', before, timing=EventTiming.BEFORE)

        self.e.trigger('/test/timing')
        self.assertEqual(log, ['before', 'after'])

        log.clear()
        self.e.trigger('/test/timing', timing='after')
        self.assertEqual(log, ['after'])

        log.clear()
        self.e.trigger('/test/timing', timing=EventTiming.BEFORE)
        self.assertEqual(log, ['before'])

    def testTimingValidation(self):
        self.e.register('/test/timing')

        def observer(**kwargs):
            pass

        with self.assertRaises(ValueError):
            self.e.subscribe('/test/timing', observer, timing='DURING')
        with self.assertRaises(ValueError):
            self.e.trigger('/test/timing', timing=42)

    def testUnregisteredEvent(self):

        def observer(**kwargs):
            pass

        with self.assertRaises(KeyError):
            self.e.subscribe('/missing', observer)

        # Triggering or unsubscribing an unknown event is a no-op
        self.e.trigger('/missing', value=1)
        self.e.unsubscribe('/missing', observer)

    def testTransferEvents(self):
        TransferEvent.registerAll()
        received = []

        def onProgress(**kwargs):
            received.append(kwargs)

        TransferEvent.chunkProgress.subscribe(onProgress)
        TransferEvent.chunkProgress.trigger(fileIndex=0, completedChunks=1, totalChunks=2, bytesTransferred=10)
        TransferEvent.chunkProgress.unsubscribe(onProgress)
        TransferEvent.chunkProgress.trigger(fileIndex=0, completedChunks=2, totalChunks=2, bytesTransferred=20)

        self.assertEqual(received, [{'fileIndex': 0, 'completedChunks': 1, 'totalChunks': 2, 'bytesTransferred': 10}])

    def testTransferEventKeys(self):
        events = (
            TransferEvent.chunkProgress, TransferEvent.fileComplete, TransferEvent.fileFailed,
            TransferEvent.transferComplete
        )
        self.assertEqual(len({event.key for event in events}), len(events))
        self.assertEqual(TransferEvent.fileFailed.key, '/transfer/file/fail')


class StorageLocatorTest(unittest.TestCase):

    def setUp(self):
        self.tempDir = tempfile.TemporaryDirectory()
        self.locator = StorageLocator.getInstance()

    def tearDown(self):
        self.tempDir.cleanup()

    def testEnvLocationFirst(self):
        path = os.path.join(self.tempDir.name, '.env')
        open(path, 'w').close()

        with patch.dict(os.environ, {'ARCHDROP_STORAGE_LOCATION': self.tempDir.name}):
            self.assertEqual(self.locator.findConfig('.env'), path)

    def testDefaultsToEnvLocationWhenMissing(self):
        with patch.dict(os.environ, {'ARCHDROP_STORAGE_LOCATION': self.tempDir.name}):
            self.assertEqual(
                self.locator.findStorage('missing-archdrop-file'),
                os.path.join(self.tempDir.name, 'missing-archdrop-file'),
            )

    def testIgnoresMissingEnvDirectory(self):
        missing = os.path.join(self.tempDir.name, 'nope')
        with patch.dict(os.environ, {'ARCHDROP_STORAGE_LOCATION': missing}):
            self.assertFalse(self.locator.findStorage('missing-archdrop-file').startswith(missing))


class SecretGetterTest(unittest.TestCase):

    def setUp(self):
        self.tempDir = tempfile.TemporaryDirectory()
        # A fresh instance per test, without cached secrets
        SecretGetter._instances.pop(SecretGetter, None)
        self.getter = SecretGetter.getInstance()

    def tearDown(self):
        SecretGetter._instances.pop(SecretGetter, None)
        self.tempDir.cleanup()

    def testEnvironmentFirst(self):
        with patch.dict(os.environ, {'ARCHDROP_TEST_SECRET': 'from-env'}):
            self.assertEqual(self.getter.get('ARCHDROP_TEST_SECRET'), 'from-env')

    def testSecretFile(self):
        with open(os.path.join(self.tempDir.name, '.secret'), 'w') as f:
            json.dump({'ARCHDROP_TEST_SECRET': 'from-file'}, f)

        with patch.dict(os.environ, {'ARCHDROP_STORAGE_LOCATION': self.tempDir.name}):
            os.environ.pop('ARCHDROP_TEST_SECRET', None)
            self.assertEqual(self.getter.get('ARCHDROP_TEST_SECRET'), 'from-file')

    def testBrokenSecretFile(self):
        with open(os.path.join(self.tempDir.name, '.secret'), 'w') as f:
            f.write('{not json')

        with patch.dict(os.environ, {'ARCHDROP_STORAGE_LOCATION': self.tempDir.name}):
            self.assertIsNone(self.getter.get('ARCHDROP_TEST_SECRET'))


class LoggingTest(unittest.TestCase):

    def setUp(self):
        self.rootLogger = logging.getLogger()
        self.originalLevel = self.rootLogger.level
        self.originalHandlers = list(self.rootLogger.handlers)

    def tearDown(self):
        self.rootLogger.setLevel(self.originalLevel)
        self.rootLogger.handlers = self.originalHandlers

    def testGetLoggerCarriesVersion(self):
        logger = getLogger('archdrop.test', version='9.9.9')

        self.assertIsInstance(logger, logging.LoggerAdapter)
        self.assertEqual(logger.extra, {'version': '9.9.9'})
        with self.assertLogs('archdrop.test', level='INFO') as captured:
            logger.info('[Test] hello')
        self.assertIn('[Test] hello', captured.output[0])

    def testConfigureGlobalLogLevel(self):
        configureGlobalLogLevel(logging.DEBUG)
        self.assertEqual(self.rootLogger.level, logging.DEBUG)

        configureGlobalLogLevel(logging.ERROR)
        self.assertEqual(self.rootLogger.level, logging.ERROR)


class ClassForNameTest(unittest.TestCase):

    def testResolve(self):
        self.assertIs(classForName('archdrop.Kernel.EventService'), EventService)
        self.assertIs(classForName('os'), os)

    def testMissingAttribute(self):
        with self.assertRaises(ImportError):
            classForName('archdrop.Kernel.NoSuchThing')


if __name__ == '__main__':
    unittest.main()
