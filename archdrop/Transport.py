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

from typing import Iterable, Iterator, Optional

import requests

from archdrop.Credentials import encodeBase64URL
from archdrop.Errors import ProtocolViolation, TransportTransientError
from archdrop.Kernel import PUBLIC_VERSION, getLogger
from archdrop.Settings import HTTP_CONNECT_TIMEOUT, HTTP_READ_TIMEOUT, TRANSFER_CHUNK_SIZE
from archdrop.Utils import StallResilientAdapter

logger = getLogger(__name__)


class ChunkTransport:
    """Relay endpoints used by the transfer engine

    Implementations raise TransportTransientError for anything worth retrying and
    ProtocolViolation for answers that can never succeed.
    """

    # Download side (peer is sending)
    def fetchManifest(self, token: str, clientId: str) -> dict:
        raise NotImplementedError

    def fetchChunk(self, token: str, fileIndex: int, chunkIndex: int, clientId: str) -> bytes:
        raise NotImplementedError

    def fetchFileHash(self, token: str, fileIndex: int, clientId: str) -> str:
        raise NotImplementedError

    # Upload side (peer is receiving)
    def publishManifest(self, token: str, request: dict, clientId: str) -> dict:
        raise NotImplementedError

    def uploadChunk(self, token: str, entry, chunkIndex: int, totalChunks: int, data: bytes, clientId: str):
        raise NotImplementedError

    def finalizeFile(self, token: str, relativePath: str, clientId: str) -> dict:
        raise NotImplementedError

    def complete(self, token: str, service: str, clientId: str):
        raise NotImplementedError

    # Framed stream mode
    def uploadStream(self, token: str, frames: Iterable[bytes]):
        raise NotImplementedError

    def openStream(self, url: str) -> Iterator[bytes]:
        raise NotImplementedError


class HTTPChunkTransport(ChunkTransport):
    """ChunkTransport over HTTP with requests

    Endpoints:
        GET  /send/<token>/manifest
        GET  /send/<token>/<fileIndex>/chunk/<chunkIndex>
        GET  /send/<token>/<fileIndex>/hash
        POST /send/<token>/complete
        POST /receive/<token>/manifest
        POST /receive/<token>/chunk          (multipart)
        POST /receive/<token>/finalize
        POST /receive/<token>/complete
        POST /upload/<token>/data            (framed stream body)
        GET  /download/<token>/data          (framed stream body)
    """

    def __init__(self, baseURL: str, session: Optional[requests.Session] = None, chunkSize: int = TRANSFER_CHUNK_SIZE,
                 timeout=(HTTP_CONNECT_TIMEOUT, HTTP_READ_TIMEOUT)):
        self.baseURL = baseURL.rstrip('/')
        self.chunkSize = chunkSize
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            adapter = StallResilientAdapter(chunkSize=chunkSize)
            session.mount('https://', adapter)
            session.mount('http://', adapter)
            session.headers['User-Agent'] = f'ArchDrop/{PUBLIC_VERSION}'
        self.session = session

    def _url(self, *parts) -> str:
        return '/'.join([self.baseURL] + [str(part).strip('/') for part in parts])

    def _request(self, method, url, **kwargs) -> requests.Response:
        kwargs.setdefault('timeout', self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise TransportTransientError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            detail = response.text[:200] if not kwargs.get('stream') else ''
            response.close()
            raise TransportTransientError(
                f"{method} {url} returned HTTP {response.status_code} {detail}".rstrip(),
                statusCode=response.status_code,
            )

        return response

    @staticmethod
    def _json(response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolViolation(f"Invalid JSON from {response.url}: {e}")

    def fetchManifest(self, token, clientId):
        response = self._request('GET', self._url('send', token, 'manifest'), params={'clientId': clientId})
        return self._json(response)

    def fetchChunk(self, token, fileIndex, chunkIndex, clientId):
        response = self._request(
            'GET', self._url('send', token, fileIndex, 'chunk', chunkIndex), params={'clientId': clientId}
        )
        return response.content

    def fetchFileHash(self, token, fileIndex, clientId):
        response = self._request('GET', self._url('send', token, fileIndex, 'hash'), params={'clientId': clientId})
        digest = self._json(response).get('sha256')
        if not isinstance(digest, str):
            raise ProtocolViolation("Hash response has no sha256", fileIndex=fileIndex)
        return digest

    def publishManifest(self, token, request, clientId):
        response = self._request(
            'POST', self._url('receive', token, 'manifest'), json=request, params={'clientId': clientId}
        )
        return self._json(response) if response.content else {}

    def uploadChunk(self, token, entry, chunkIndex, totalChunks, data, clientId):
        form = {
            'relativePath': entry.relativePath,
            'fileName': entry.name,
            'chunkIndex': str(chunkIndex),
            'totalChunks': str(totalChunks),
            'fileSize': str(entry.size),
        }
        # The receiver learns the file's nonce base with its first chunk
        if chunkIndex == 0:
            form['nonce'] = encodeBase64URL(entry.nonceBase)

        self._request(
            'POST',
            self._url('receive', token, 'chunk'),
            params={'clientId': clientId},
            data=form,
            files={'chunk': (entry.name, data, 'application/octet-stream')},
        )

    def finalizeFile(self, token, relativePath, clientId):
        response = self._request(
            'POST', self._url('receive', token, 'finalize'), data={'relativePath': relativePath},
            params={'clientId': clientId}
        )
        return self._json(response) if response.content else {}

    def complete(self, token, service, clientId):
        self._request('POST', self._url(service, token, 'complete'), params={'clientId': clientId})

    def uploadStream(self, token, frames):
        # A generator body is sent with chunked transfer encoding
        self._request(
            'POST',
            self._url('upload', token, 'data'),
            data=iter(frames),
            headers={'Content-Type': 'application/octet-stream'},
            timeout=(self.timeout[0], None),
        )

    def openStream(self, url):
        response = self._request('GET', url, stream=True)

        def iterContent():
            try:
                for data in response.iter_content(chunk_size=self.chunkSize):
                    yield data
            except requests.RequestException as e:
                raise TransportTransientError(f"Stream from {url} interrupted: {e}") from e
            finally:
                response.close()

        return iterContent()

    def streamURL(self, token):
        return self._url('download', token, 'data')
