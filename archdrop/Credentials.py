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

import base64
import binascii

from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from archdrop.E2EE import KEY_LENGTH, NONCE_BASE_LENGTH, generateKey, generateNonceBase
from archdrop.Errors import ProtocolViolation


def encodeBase64URL(data: bytes) -> str:
    """URL-safe base64 without padding"""
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def decodeBase64URL(text: str) -> bytes:
    """Inverse of encodeBase64URL, padding is re-added before decoding"""
    padded = text + '=' * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode('ascii'))
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise ProtocolViolation(f"Invalid base64url value: {e}")


class TransferCredentials:
    """Key material of one transfer, carried in the URL fragment

    Fragment: #key=<base64url>&nonce=<base64url>. The fragment is never sent to the relay.
    The nonce is the stream base nonce; manifest transfers carry per file nonces in the
    manifest instead and may omit it.
    """

    def __init__(self, key: bytes, nonceBase: Optional[bytes] = None, token: Optional[str] = None,
                 baseURL: Optional[str] = None):
        if len(key) != KEY_LENGTH:
            raise ProtocolViolation(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
        if nonceBase is not None and len(nonceBase) != NONCE_BASE_LENGTH:
            raise ProtocolViolation(f"Nonce must be {NONCE_BASE_LENGTH} bytes, got {len(nonceBase)}")

        self.key = bytes(key)
        self.nonceBase = bytes(nonceBase) if nonceBase is not None else None
        self.token = token
        self.baseURL = baseURL

    def __repr__(self):
        return f'TransferCredentials(token={self.token!r}, baseURL={self.baseURL!r})'

    @classmethod
    def generate(cls, token=None, baseURL=None, withNonce=True) -> 'TransferCredentials':
        return cls(generateKey(), generateNonceBase() if withNonce else None, token=token, baseURL=baseURL)

    @classmethod
    def fromFragment(cls, fragment: str, requireNonce: bool = False, token=None, baseURL=None):
        """Parse `key=..&nonce=..` (a leading '#' is allowed)

        Raises:
            ProtocolViolation: If the key is missing or a value is malformed
        """
        params = parse_qs(fragment.lstrip('#'), keep_blank_values=True)

        keyValues = params.get('key')
        if not keyValues or not keyValues[0]:
            raise ProtocolViolation("Missing encryption key in URL fragment")

        nonceValues = params.get('nonce')
        if requireNonce and (not nonceValues or not nonceValues[0]):
            raise ProtocolViolation("Missing nonce in URL fragment")

        key = decodeBase64URL(keyValues[0])
        nonceBase = decodeBase64URL(nonceValues[0]) if nonceValues and nonceValues[0] else None

        return cls(key, nonceBase, token=token, baseURL=baseURL)

    @classmethod
    def fromURL(cls, url: str, requireNonce: bool = False) -> 'TransferCredentials':
        """Parse a share URL: https://host[:port]/<service>/<token>#key=..&nonce=.."""
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise ProtocolViolation(f"Not an absolute URL: {url}")

        segments = [segment for segment in parts.path.split('/') if segment]
        if not segments:
            raise ProtocolViolation(f"No transfer token in URL: {url}")

        return cls.fromFragment(
            parts.fragment,
            requireNonce=requireNonce,
            token=segments[-1],
            baseURL=f'{parts.scheme}://{parts.netloc}',
        )

    def toFragment(self) -> str:
        params = {'key': encodeBase64URL(self.key)}
        if self.nonceBase is not None:
            params['nonce'] = encodeBase64URL(self.nonceBase)
        return urlencode(params)

    def buildShareURL(self, service: str, baseURL: Optional[str] = None, token: Optional[str] = None) -> str:
        baseURL = (baseURL or self.baseURL or '').rstrip('/')
        token = token or self.token
        if not baseURL or not token:
            raise ValueError("Share URL needs a base URL and a token")

        return f'{baseURL}/{service.strip("/")}/{token}#{self.toFragment()}'
