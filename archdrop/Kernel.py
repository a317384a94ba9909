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
import logging
import platform
import threading
import json

# Error reporting is off unless a SENTRY_DSN secret is configured.
import sentry_sdk

from pathlib import Path
from enum import Enum

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '0.3.0'

LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}


def configureGlobalLogLevel(logLevel):
    """
    Configure the global logging level for the application.
    This affects all loggers created via getLogger().

    Args:
        logLevel: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    if not rootLogger.handlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        consoleHandler.setFormatter(formatter)
        rootLogger.addHandler(consoleHandler)
    else:
        for handler in rootLogger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, SentryHandler):
                handler.setLevel(logLevel)
                handler.setFormatter(formatter)


if os.getenv('ARCHDROP_LOGGING_LEVEL'):
    configureGlobalLogLevel(LOG_LEVEL_MAPPING.get(os.getenv('ARCHDROP_LOGGING_LEVEL').upper(), logging.WARNING))


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger with Sentry integration. Sentry is only initialized when a SENTRY_DSN
    secret is available through SecretGetter, so nothing is reported by default.

    Args:
        name: Logger name
        version: Version string for logging context
    """
    try:
        sentryDsn = None
        if not sentry_sdk.get_client().is_active():
            sentryDsn = SecretGetter.getInstance().get('SENTRY_DSN')

            if sentryDsn:
                # Suppress "sentry is attempting to send pending events..." at exit
                sentryAtexit.default_callback = lambda pending, timeout: None

                sentry_sdk.init(
                    dsn=sentryDsn,
                    release=f'archdrop@{version}',
                    default_integrations=False,
                    integrations=[
                        LoggingIntegration(),
                        sentryAtexit.AtexitIntegration(),
                    ],
                )

        logger = logging.getLogger(name)

        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            handler = SentryHandler()
            handler.setFormatter(logging.Formatter('%(asctime)s version[%(version)s] : %(message)s'))
            logger.addHandler(handler)

        adapter = logging.LoggerAdapter(logger, {'version': version or 'unknown'})
        if sentryDsn:
            adapter.debug('Sentry initialized')
        return adapter

    except Exception as e:
        fallbackLogger = logging.getLogger(name)
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")
        return fallbackLogger


def classForName(qualifiedName):
    """
    Get a class or module by its fully qualified name.
    """
    if not isinstance(qualifiedName, str):
        qualifiedName = str(qualifiedName)

    if '.' not in qualifiedName:
        return __import__(qualifiedName)

    parts = qualifiedName.split('.')
    moduleName = ".".join(parts[:-1])
    module = __import__(moduleName, fromlist=[parts[-1]])

    try:
        return getattr(module, parts[-1])
    except AttributeError:
        raise ImportError(f"Unable to import '{qualifiedName}'.")


class Singleton:
    """
    Thread-safe singleton base class. Subclasses override initialize() instead of __init__,
    it runs once for the lifetime of the instance.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if cls not in cls._instances:
            with cls._lock:
                if cls not in cls._instances:
                    cls._instances[cls] = super().__new__(cls)
        return cls._instances[cls]

    def __init__(self, *args, **kwargs):
        if not hasattr(self, '_initialized'):
            self.initialize(*args, **kwargs)
            self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            cls()
        return cls._instances[cls]


class EventTiming(Enum):
    """Constants for event timing phases"""
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class EventService(Singleton):
    """
    Dispatches transfer events to observers. Every registered event owns a pair of
    'signalslot' signals, one fired before and one after the event.

    Observers are called with keyword arguments only and must accept **kwargs.
    """

    def initialize(self):
        self.signals = {}

    def reset(self):
        """
        Clears all registered signals. Should only be used in test suites
        to ensure test isolation.
        """
        self.signals.clear()

    def _normalizeTiming(self, timing):
        if timing is None or isinstance(timing, EventTiming):
            return timing

        if isinstance(timing, str):
            try:
                return EventTiming(timing.upper())
            except ValueError:
                raise ValueError(f"Invalid timing value: '{timing}'. Must be 'BEFORE' or 'AFTER'.")

        raise ValueError(f"Timing must be EventTiming enum, string, or None. Got: {type(timing)}")

    def _getSignal(self, event, timing):
        return self.signals[event][0 if timing == EventTiming.BEFORE else 1]

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        if self.isRegistered(event):
            return False
        self.signals[event] = (Signal(), Signal())
        return True

    def trigger(self, event, **kwargs):
        """
        Trigger an event, calling all connected observers. A 'timing' keyword limits the
        call to one phase, otherwise BEFORE observers run first and AFTER observers next.
        """
        timing = self._normalizeTiming(kwargs.pop('timing', None))

        if not self.isRegistered(event):
            return

        beforeSignal, afterSignal = self.signals[event]

        if timing in (EventTiming.BEFORE, None):
            beforeSignal.emit(**kwargs)

        if timing in (EventTiming.AFTER, None):
            afterSignal.emit(**kwargs)

    def subscribe(self, event, observer, timing=EventTiming.AFTER):
        if not self.isRegistered(event):
            raise KeyError(f"You must register event '{event}' first.")

        timing = self._normalizeTiming(timing)
        if timing not in (EventTiming.BEFORE, EventTiming.AFTER):
            raise ValueError("Timing must be EventTiming.BEFORE or EventTiming.AFTER.")

        signalObject = self._getSignal(event, timing)
        if not signalObject.is_connected(observer):
            signalObject.connect(observer)

    def unsubscribe(self, event, observer, timing=None):
        if not self.isRegistered(event):
            return

        timings = [self._normalizeTiming(timing)] if timing else [EventTiming.BEFORE, EventTiming.AFTER]

        for t in timings:
            signalObject = self._getSignal(event, t)
            if signalObject.is_connected(observer):
                signalObject.disconnect(observer)


class Event:
    """ Simple Event wrapper"""

    def __init__(self, key):
        self.key = key

        self.eventService = EventService.getInstance()

    def register(self):
        return self.eventService.register(self.key)

    def subscribe(self, observer, timing=EventTiming.AFTER):
        return self.eventService.subscribe(self.key, observer, timing=timing)

    def unsubscribe(self, observer, timing=None):
        return self.eventService.unsubscribe(self.key, observer, timing=timing)

    def trigger(self, **kwargs):
        return self.eventService.trigger(self.key, **kwargs)


class StorageLocator(Singleton):
    """
    Simple storage location resolution for configuration files

    Environment Variables:
        ARCHDROP_STORAGE_LOCATION: Override storage location for testing and advanced users.
                                   If set to an existing directory it is searched first.
    """

    def initialize(self, appName='archdrop'):
        self.appName = appName
        self._homeDir = os.path.expanduser(f'~{os.path.sep}.{appName}')
        self._platformDir = self._getPlatformDir()

    def _getPlatformDir(self):
        system = platform.system()

        if system == 'Windows':
            appdata = os.getenv('APPDATA', os.path.expanduser('~'))
            return os.path.join(appdata, self.appName)
        elif system == 'Darwin':
            return os.path.expanduser(f'~/Library/Application Support/{self.appName}')
        else:
            return os.path.expanduser(f'~/.config/{self.appName}')

    def _getEnvStorageLocation(self):
        location = os.getenv('ARCHDROP_STORAGE_LOCATION')
        if location and os.path.isdir(location):
            return location
        return None

    def findStorage(self, filename):
        """
        Find storage location for reading config/data files.
        Priority: ARCHDROP_STORAGE_LOCATION -> current -> home -> platform

        Returns:
            Path to the file (may not exist)
        """
        envLocation = self._getEnvStorageLocation()
        candidates = [os.path.join(envLocation, filename)] if envLocation else []
        candidates += [
            os.path.abspath(filename),
            os.path.join(self._homeDir, filename),
            os.path.join(self._platformDir, filename),
        ]

        for path in candidates:
            if os.path.exists(path):
                return path

        if envLocation:
            return os.path.join(envLocation, filename)
        return os.path.join(self._homeDir, filename)

    def findConfig(self, filename):
        return self.findStorage(filename)


class SecretGetter(Singleton):
    """
    Secrets with caching. Environment variables are searched first, then the JSON
    .secret file found through StorageLocator.
    """

    DEFAULT_SECRET_FILE = '.secret'

    def initialize(self, secretFileName=DEFAULT_SECRET_FILE):
        self.secretFileName = secretFileName
        self._cache = {}
        self._secretData = None

    def getPath(self):
        return StorageLocator.getInstance().findStorage(self.secretFileName)

    def _loadSecretFile(self):
        if self._secretData is not None:
            return

        secretPath = self.getPath()
        if not os.path.exists(secretPath):
            self._secretData = {}
            return

        try:
            self._secretData = json.loads(Path(secretPath).read_text())
        except (json.JSONDecodeError, OSError) as e:
            logging.getLogger(__name__).warning(f"Failed to load secret file {secretPath}: {e}")
            self._secretData = {}

    def get(self, key: str):
        """
        Get secret value by key with caching.

        Returns:
            str or None: Secret value if found, None otherwise
        """
        if self._cache.get(key):
            return self._cache[key]

        value = os.getenv(key)
        if not value:
            self._loadSecretFile()
            value = self._secretData.get(key)

        if value:
            self._cache[key] = value
        return value


# Event pattern: RESTful + /[action] (create, update, get, delete, others...)
class TransferEvent:
    chunkProgress = Event('/transfer/chunk/update')
    fileComplete = Event('/transfer/file/create')
    fileFailed = Event('/transfer/file/fail')
    transferComplete = Event('/transfer/complete')

    @classmethod
    def registerAll(cls):
        for event in (cls.chunkProgress, cls.fileComplete, cls.fileFailed, cls.transferComplete):
            event.register()


TransferEvent.registerAll()
