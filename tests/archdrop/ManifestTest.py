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
import tempfile
import unittest

from archdrop.Credentials import encodeBase64URL
from archdrop.Errors import ProtocolViolation
from archdrop.Integrity import hashFile
from archdrop.Manifest import FileEntry, Manifest, resolveOutputPath, validatePath


class ValidatePathTest(unittest.TestCase):

    def testNormalizes(self):
        self.assertEqual(validatePath('a/b/c.txt'), 'a/b/c.txt')
        self.assertEqual(validatePath('a\\b\\c.txt'), 'a/b/c.txt')
        self.assertEqual(validatePath('./a//b.txt'), 'a/b.txt')

    def testRejects(self):
        for path in ['', '/etc/passwd', '\\\\server\\share', 'C:\\Windows\\x', 'c:/x', '../x', 'a/../../x',
                     'a\\..\\x', 'a\0b', '.', './/']:
            with self.subTest(path=path):
                with self.assertRaises(ProtocolViolation):
                    validatePath(path)

    def testResolveOutputPath(self):
        with tempfile.TemporaryDirectory() as outputDir:
            root = os.path.realpath(outputDir)
            self.assertEqual(resolveOutputPath(outputDir, 'a/b.txt'), os.path.join(root, 'a', 'b.txt'))

            with self.assertRaises(ProtocolViolation):
                resolveOutputPath(outputDir, '../escape.txt')

    def testResolveOutputPathThroughSymlink(self):
        with tempfile.TemporaryDirectory() as outputDir, tempfile.TemporaryDirectory() as outside:
            try:
                os.symlink(outside, os.path.join(outputDir, 'link'))
            except (OSError, NotImplementedError):
                self.skipTest("symlinks not supported")

            with self.assertRaises(ProtocolViolation):
                resolveOutputPath(outputDir, 'link/file.txt')


class FileEntryTest(unittest.TestCase):

    def entryDict(self, **overrides):
        data = {
            'index': 0,
            'name': 'b.txt',
            'relative_path': 'a/b.txt',
            'size': 10,
            'nonce': encodeBase64URL(b'\x01' * 7),
            'sha256': 'AB' * 32,
        }
        data.update(overrides)
        return data

    def testFromDict(self):
        entry = FileEntry.fromDict(self.entryDict())

        self.assertEqual(entry.relativePath, 'a/b.txt')
        self.assertEqual(entry.nonceBase, b'\x01' * 7)
        self.assertEqual(entry.sha256, 'ab' * 32)
        self.assertEqual(entry.chunkCount(4), 3)
        self.assertEqual(FileEntry.fromDict(entry.toDict()), entry)

    def testNameDefaultsToBasename(self):
        data = self.entryDict()
        del data['name']
        self.assertEqual(FileEntry.fromDict(data).name, 'b.txt')

    def testMissingDigestAllowed(self):
        self.assertIsNone(FileEntry.fromDict(self.entryDict(sha256=None)).sha256)

    def testInvalid(self):
        invalid = [
            self.entryDict(index=-1),
            self.entryDict(index=True),
            self.entryDict(size='10'),
            self.entryDict(size=-5),
            self.entryDict(nonce=encodeBase64URL(b'\x01' * 12)),
            self.entryDict(nonce=5),
            self.entryDict(sha256='xyz'),
            self.entryDict(relative_path='../x'),
        ]
        for data in invalid:
            with self.subTest(data=data):
                with self.assertRaises(ProtocolViolation):
                    FileEntry.fromDict(data)

        with self.assertRaises(ProtocolViolation):
            FileEntry.fromDict({'index': 0})
        with self.assertRaises(ProtocolViolation):
            FileEntry.fromDict(['not', 'a', 'dict'])


class ManifestTest(unittest.TestCase):

    def setUp(self):
        self.tempDir = tempfile.TemporaryDirectory()
        self.root = os.path.join(self.tempDir.name, 'album')
        os.makedirs(os.path.join(self.root, 'sub'))

        self.files = {
            'b.txt': b'bravo',
            'a.txt': b'alpha',
            'sub/c.bin': os.urandom(3000),
        }
        for relativePath, data in self.files.items():
            with open(os.path.join(self.root, *relativePath.split('/')), 'wb') as f:
                f.write(data)

    def tearDown(self):
        self.tempDir.cleanup()

    def testBuildFromDirectory(self):
        manifest = Manifest.build([self.root])

        self.assertEqual(
            [entry.relativePath for entry in manifest],
            ['album/a.txt', 'album/b.txt', 'album/sub/c.bin'],
        )
        self.assertEqual([entry.index for entry in manifest], [0, 1, 2])
        self.assertEqual(manifest.totalSize, sum(len(data) for data in self.files.values()))
        self.assertEqual(len({entry.nonceBase for entry in manifest}), 3)

        entry = manifest[2]
        self.assertEqual(entry.sha256, hashFile(entry.sourcePath))
        self.assertEqual(entry.name, 'c.bin')

    def testBuildSingleFile(self):
        manifest = Manifest.build([os.path.join(self.root, 'a.txt')])

        self.assertEqual(len(manifest), 1)
        self.assertEqual(manifest[0].relativePath, 'a.txt')

    def testBuildWithBasePath(self):
        manifest = Manifest.build([os.path.join(self.root, 'sub', 'c.bin')], basePath=self.root)
        self.assertEqual(manifest[0].relativePath, 'sub/c.bin')

    def testBuildMissingPath(self):
        with self.assertRaises(FileNotFoundError):
            Manifest.build([os.path.join(self.root, 'missing')])

    def testDictRoundTripKeepsWireKeys(self):
        manifest = Manifest.build([self.root])
        data = manifest.toDict()

        self.assertEqual(
            set(data['files'][0]), {'index', 'name', 'relative_path', 'size', 'nonce', 'sha256'}
        )

        parsed = Manifest.fromDict(data)
        self.assertEqual(list(parsed), list(manifest))
        self.assertIsNone(parsed[0].sourcePath)

    def testUploadRequest(self):
        manifest = Manifest.build([self.root])
        self.assertEqual(
            manifest.toUploadRequest()['files'][0], {'relative_path': 'album/a.txt', 'size': 5}
        )

    def testRejectsSparseIndices(self):
        entries = [
            FileEntry(0, 'a', 'a', 1, b'\x01' * 7),
            FileEntry(2, 'b', 'b', 1, b'\x02' * 7),
        ]
        with self.assertRaises(ProtocolViolation):
            Manifest(entries)

    def testRejectsSharedNonce(self):
        entries = [
            FileEntry(0, 'a', 'a', 1, b'\x01' * 7),
            FileEntry(1, 'b', 'b', 1, b'\x01' * 7),
        ]
        with self.assertRaises(ProtocolViolation):
            Manifest(entries)

    def testRejectsDuplicatePath(self):
        data = Manifest([
            FileEntry(0, 'same.bin', 'same.bin', 1, b'\x01' * 7),
            FileEntry(1, 'other.bin', 'other.bin', 1, b'\x02' * 7),
            FileEntry(2, 'z.bin', 'z.bin', 1, b'\x03' * 7),
        ]).toDict()
        data['files'][1]['relative_path'] = 'same.bin'

        with self.assertRaises(ProtocolViolation) as ctx:
            Manifest.fromDict(data)
        self.assertEqual(ctx.exception.fileIndex, 1)

    def testMissingIndex(self):
        manifest = Manifest([FileEntry(0, 'a', 'a', 1, b'\x01' * 7)])
        with self.assertRaises(ProtocolViolation):
            manifest[5]

    def testFromDictInvalid(self):
        with self.assertRaises(ProtocolViolation):
            Manifest.fromDict({'entries': []})
        with self.assertRaises(ProtocolViolation):
            Manifest.fromDict('files')


if __name__ == '__main__':
    unittest.main()
