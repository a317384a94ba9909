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
import unittest

from urllib.parse import parse_qs, urlsplit

import requests
import requests_mock

from archdrop.Credentials import encodeBase64URL
from archdrop.Errors import ProtocolViolation, TransportTransientError
from archdrop.Manifest import FileEntry
from archdrop.Transport import HTTPChunkTransport
from archdrop.Utils import StallResilientAdapter

BASE_URL = 'https://relay.example'


def queryOf(request):
    return parse_qs(urlsplit(request.url).query)


class HTTPChunkTransportTest(unittest.TestCase):

    def setUp(self):
        self.transport = HTTPChunkTransport(BASE_URL + '/', chunkSize=64)
        self.entry = FileEntry(0, 'b.txt', 'a/b.txt', 100, b'\x07' * 7)

    def testDefaultSession(self):
        self.assertIsInstance(self.transport.session.get_adapter(BASE_URL), StallResilientAdapter)
        self.assertTrue(self.transport.session.headers['User-Agent'].startswith('ArchDrop/'))
        self.assertEqual(self.transport.baseURL, BASE_URL)

    @requests_mock.Mocker()
    def testFetchManifest(self, m):
        m.get(f'{BASE_URL}/send/tok/manifest', json={'files': []})

        self.assertEqual(self.transport.fetchManifest('tok', 'client-1'), {'files': []})
        self.assertEqual(queryOf(m.last_request), {'clientId': ['client-1']})

    @requests_mock.Mocker()
    def testFetchChunk(self, m):
        m.get(f'{BASE_URL}/send/tok/2/chunk/5', content=b'\x00' * 32)
        self.assertEqual(self.transport.fetchChunk('tok', 2, 5, 'c'), b'\x00' * 32)

    @requests_mock.Mocker()
    def testFetchFileHash(self, m):
        m.get(f'{BASE_URL}/send/tok/1/hash', json={'sha256': 'ab' * 32})
        self.assertEqual(self.transport.fetchFileHash('tok', 1, 'c'), 'ab' * 32)

        m.get(f'{BASE_URL}/send/tok/1/hash', json={'error': 'not ready'})
        with self.assertRaises(ProtocolViolation):
            self.transport.fetchFileHash('tok', 1, 'c')

    @requests_mock.Mocker()
    def testInvalidJSON(self, m):
        m.get(f'{BASE_URL}/send/tok/manifest', text='<html>proxy error</html>')
        with self.assertRaises(ProtocolViolation):
            self.transport.fetchManifest('tok', 'c')

    @requests_mock.Mocker()
    def testHTTPErrorIsTransient(self, m):
        m.get(f'{BASE_URL}/send/tok/0/chunk/0', status_code=503, text='busy')

        with self.assertRaises(TransportTransientError) as ctx:
            self.transport.fetchChunk('tok', 0, 0, 'c')
        self.assertEqual(ctx.exception.statusCode, 503)

    @requests_mock.Mocker()
    def testConnectionErrorIsTransient(self, m):
        m.get(f'{BASE_URL}/send/tok/0/chunk/0', exc=requests.exceptions.ConnectTimeout)

        with self.assertRaises(TransportTransientError) as ctx:
            self.transport.fetchChunk('tok', 0, 0, 'c')
        self.assertIsInstance(ctx.exception.__cause__, requests.exceptions.ConnectTimeout)
        self.assertIsNone(ctx.exception.statusCode)

    @requests_mock.Mocker()
    def testPublishManifest(self, m):
        m.post(f'{BASE_URL}/receive/tok/manifest', json={'success': True})
        request = {'files': [{'relative_path': 'a/b.txt', 'size': 100}]}

        self.assertEqual(self.transport.publishManifest('tok', request, 'c'), {'success': True})
        self.assertEqual(json.loads(m.last_request.body), request)

    @requests_mock.Mocker()
    def testUploadFirstChunkCarriesNonce(self, m):
        m.post(f'{BASE_URL}/receive/tok/chunk', status_code=200)

        self.transport.uploadChunk('tok', self.entry, 0, 2, b'ciphertext', 'client-1')

        body = m.last_request.body
        self.assertIn(b'name="nonce"', body)
        self.assertIn(encodeBase64URL(self.entry.nonceBase).encode(), body)
        self.assertIn(b'name="relativePath"', body)
        self.assertIn(b'a/b.txt', body)
        self.assertIn(b'name="chunk"', body)
        self.assertIn(b'ciphertext', body)
        self.assertEqual(queryOf(m.last_request), {'clientId': ['client-1']})

    @requests_mock.Mocker()
    def testUploadLaterChunkHasNoNonce(self, m):
        m.post(f'{BASE_URL}/receive/tok/chunk', status_code=200)

        self.transport.uploadChunk('tok', self.entry, 1, 2, b'ciphertext', 'c')
        self.assertNotIn(b'name="nonce"', m.last_request.body)

    @requests_mock.Mocker()
    def testFinalizeFile(self, m):
        m.post(f'{BASE_URL}/receive/tok/finalize', json={'success': True, 'sha256': 'cd' * 32})

        self.assertEqual(self.transport.finalizeFile('tok', 'a/b.txt', 'c')['sha256'], 'cd' * 32)
        self.assertEqual(parse_qs(m.last_request.body), {'relativePath': ['a/b.txt']})

    @requests_mock.Mocker()
    def testFinalizeWithEmptyBody(self, m):
        m.post(f'{BASE_URL}/receive/tok/finalize', status_code=204)
        self.assertEqual(self.transport.finalizeFile('tok', 'a/b.txt', 'c'), {})

    @requests_mock.Mocker()
    def testComplete(self, m):
        m.post(f'{BASE_URL}/send/tok/complete', status_code=200)
        m.post(f'{BASE_URL}/receive/tok/complete', status_code=200)

        self.transport.complete('tok', 'send', 'c')
        self.assertEqual(urlsplit(m.last_request.url).path, '/send/tok/complete')

        self.transport.complete('tok', 'receive', 'c')
        self.assertEqual(urlsplit(m.last_request.url).path, '/receive/tok/complete')

    @requests_mock.Mocker()
    def testUploadStream(self, m):
        received = []

        def consume(request, context):
            received.append(b''.join(request.body))
            return ''

        m.post(f'{BASE_URL}/upload/tok/data', text=consume)

        self.transport.uploadStream('tok', (frame for frame in [b'one', b'two']))
        self.assertEqual(received, [b'onetwo'])

    @requests_mock.Mocker()
    def testOpenStream(self, m):
        url = self.transport.streamURL('tok')
        self.assertEqual(url, f'{BASE_URL}/download/tok/data')

        m.get(url, content=b'x' * 150)
        chunks = list(self.transport.openStream(url))

        self.assertEqual(b''.join(chunks), b'x' * 150)
        self.assertTrue(all(len(chunk) <= 64 for chunk in chunks))

    @requests_mock.Mocker()
    def testOpenStreamHTTPError(self, m):
        url = self.transport.streamURL('tok')
        m.get(url, status_code=404)

        with self.assertRaises(TransportTransientError):
            self.transport.openStream(url)


if __name__ == '__main__':
    unittest.main()
