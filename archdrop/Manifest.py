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
import posixpath
import re

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from archdrop.Credentials import decodeBase64URL, encodeBase64URL
from archdrop.E2EE import NONCE_BASE_LENGTH, generateNonceBase
from archdrop.Errors import ProtocolViolation
from archdrop.Integrity import hashFile
from archdrop.Kernel import getLogger
from archdrop.Reader import countChunks

logger = getLogger(__name__)

SHA256_HEX = re.compile(r'^[0-9a-fA-F]{64}$')


def validatePath(path: str) -> str:
    """Check a relative path received from a peer and return it with '/' separators

    Raises:
        ProtocolViolation: For empty, absolute or NUL-containing paths and '..' components
    """
    if not isinstance(path, str) or not path:
        raise ProtocolViolation("Empty path")

    if '\0' in path:
        raise ProtocolViolation(f"Path contains NUL byte: {path!r}")

    normalized = path.replace('\\', '/')
    if normalized.startswith('/') or re.match(r'^[A-Za-z]:', normalized):
        raise ProtocolViolation(f"Absolute path not allowed: {path}")

    parts = [part for part in normalized.split('/') if part not in ('', '.')]
    if '..' in parts:
        raise ProtocolViolation(f"Path traversal not allowed: {path}")
    if not parts:
        raise ProtocolViolation(f"Path has no file name: {path}")

    return '/'.join(parts)


def resolveOutputPath(outputDir: str, relativePath: str) -> str:
    """Local path for a manifest entry, guaranteed to stay inside outputDir"""
    safePath = validatePath(relativePath)
    root = os.path.realpath(outputDir)
    target = os.path.realpath(os.path.join(root, *safePath.split('/')))

    if os.path.commonpath([root, target]) != root:
        raise ProtocolViolation(f"Path escapes output directory: {relativePath}")
    return target


@dataclass(frozen=True)
class FileEntry:
    index: int
    name: str
    relativePath: str
    size: int
    nonceBase: bytes
    sha256: Optional[str] = None
    sourcePath: Optional[str] = field(default=None, compare=False, repr=False)

    def chunkCount(self, chunkSize: int) -> int:
        return countChunks(self.size, chunkSize)

    def toDict(self) -> dict:
        return {
            'index': self.index,
            'name': self.name,
            'relative_path': self.relativePath,
            'size': self.size,
            'nonce': encodeBase64URL(self.nonceBase),
            'sha256': self.sha256,
        }

    @classmethod
    def fromDict(cls, data: dict) -> 'FileEntry':
        if not isinstance(data, dict):
            raise ProtocolViolation(f"Manifest entry must be an object, got {type(data).__name__}")

        try:
            index = data['index']
            size = data['size']
            relativePath = data['relative_path']
            nonce = data['nonce']
        except KeyError as e:
            raise ProtocolViolation(f"Manifest entry missing field {e}")

        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            raise ProtocolViolation(f"Invalid file index: {index!r}")
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            raise ProtocolViolation(f"Invalid file size: {size!r}", fileIndex=index)
        if not isinstance(nonce, str):
            raise ProtocolViolation("Invalid nonce", fileIndex=index)

        nonceBase = decodeBase64URL(nonce)
        if len(nonceBase) != NONCE_BASE_LENGTH:
            raise ProtocolViolation(f"Nonce must be {NONCE_BASE_LENGTH} bytes, got {len(nonceBase)}", fileIndex=index)

        sha256 = data.get('sha256')
        if sha256 is not None and not (isinstance(sha256, str) and SHA256_HEX.match(sha256)):
            raise ProtocolViolation(f"Invalid sha256: {sha256!r}", fileIndex=index)

        relativePath = validatePath(relativePath)
        name = data.get('name') or posixpath.basename(relativePath)

        return cls(index, name, relativePath, size, nonceBase, sha256.lower() if sha256 else None)


class Manifest:
    """Ordered list of files agreed between sender and receiver

    Indices are dense in [0, len) and every file has its own nonce base.
    """

    def __init__(self, files: Iterable[FileEntry]):
        self.files: List[FileEntry] = sorted(files, key=lambda entry: entry.index)

        for position, entry in enumerate(self.files):
            if entry.index != position:
                raise ProtocolViolation(f"Manifest indices must be dense from 0, found {entry.index} at {position}")

        nonceBases = {entry.nonceBase for entry in self.files}
        if len(nonceBases) != len(self.files):
            raise ProtocolViolation("Manifest reuses a nonce base across files")

        seenPaths = set()
        for entry in self.files:
            if entry.relativePath in seenPaths:
                raise ProtocolViolation(
                    f"Manifest lists {entry.relativePath} more than once", fileIndex=entry.index
                )
            seenPaths.add(entry.relativePath)

    def __iter__(self):
        return iter(self.files)

    def __len__(self):
        return len(self.files)

    def __getitem__(self, index) -> FileEntry:
        try:
            return self.files[index]
        except IndexError:
            raise ProtocolViolation(f"No file with index {index}", fileIndex=index)

    @property
    def totalSize(self) -> int:
        return sum(entry.size for entry in self.files)

    @staticmethod
    def _collect(paths, basePath):
        for path in paths:
            path = os.path.abspath(path)

            if os.path.isdir(path):
                root = basePath or os.path.dirname(path)
                for directory, dirs, files in os.walk(path):
                    dirs.sort()
                    for filename in sorted(files):
                        filePath = os.path.join(directory, filename)
                        yield filePath, os.path.relpath(filePath, root)
            elif os.path.isfile(path):
                yield path, os.path.relpath(path, basePath) if basePath else os.path.basename(path)
            else:
                raise FileNotFoundError(f"No such file or directory: {path}")

    @classmethod
    def build(cls, paths: Iterable[str], basePath: Optional[str] = None) -> 'Manifest':
        """Describe local files (directories are walked in sorted order)

        Every entry gets a fresh random nonce base and the sha256 of its content.
        """
        basePath = os.path.abspath(basePath) if basePath else None
        entries = []
        usedNonces = set()

        for index, (filePath, relativePath) in enumerate(cls._collect(paths, basePath)):
            relativePath = validatePath(relativePath.replace(os.sep, '/'))

            nonceBase = generateNonceBase()
            while nonceBase in usedNonces:
                nonceBase = generateNonceBase()
            usedNonces.add(nonceBase)

            entries.append(
                FileEntry(
                    index=index,
                    name=os.path.basename(filePath),
                    relativePath=relativePath,
                    size=os.path.getsize(filePath),
                    nonceBase=nonceBase,
                    sha256=hashFile(filePath),
                    sourcePath=filePath,
                )
            )
            logger.debug(f"[Manifest] #{index} {relativePath} ({entries[-1].size} bytes)")

        return cls(entries)

    def toDict(self) -> dict:
        return {'files': [entry.toDict() for entry in self.files]}

    @classmethod
    def fromDict(cls, data) -> 'Manifest':
        if not isinstance(data, dict) or not isinstance(data.get('files'), list):
            raise ProtocolViolation("Manifest must be an object with a 'files' list")

        return cls(FileEntry.fromDict(entry) for entry in data['files'])

    def toUploadRequest(self) -> dict:
        """Body announcing the files to a receiver"""
        return {'files': [{'relative_path': entry.relativePath, 'size': entry.size} for entry in self.files]}
