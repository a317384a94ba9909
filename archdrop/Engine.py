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
import functools
import hashlib
import uuid

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional

from archdrop.Credentials import TransferCredentials
from archdrop.E2EE import ChunkCipher, StreamDecryptor, StreamEncryptor, TAG_LENGTH
from archdrop.Errors import ProtocolViolation, TransferError
from archdrop.Integrity import IntegrityVerifier, TransferResult
from archdrop.Kernel import TransferEvent, getLogger
from archdrop.Manifest import FileEntry, Manifest, resolveOutputPath
from archdrop.Reader import FileSourceReader, SourceReader, countChunks
from archdrop.Reassembler import ChunkSink, FileSink, Reassembler
from archdrop.Retry import RetryPolicy
from archdrop.Scheduler import BoundedScheduler
from archdrop.Settings import MAX_CONCURRENT_CHUNKS, TRANSFER_CHUNK_SIZE
from archdrop.Transport import ChunkTransport

logger = getLogger(__name__)


@dataclass
class FileOutcome:
    entry: FileEntry
    result: Optional[TransferResult] = None
    error: Optional[TransferError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TransferEngine:
    """Chunked end-to-end encrypted transfers through a relay

    Manifest mode moves files chunk by chunk: up to `concurrency` chunks per file are in
    flight, each chunk is encrypted once and only its transport call is retried. Files are
    processed one after another, a failed file does not stop the others unless atomic.

    Stream mode moves one payload as a sequence of frames in a single request.
    """

    def __init__(
        self,
        transport: ChunkTransport,
        credentials: TransferCredentials,
        chunkSize: int = TRANSFER_CHUNK_SIZE,
        concurrency: int = MAX_CONCURRENT_CHUNKS,
        retryPolicy: Optional[RetryPolicy] = None,
        crypto=None,
        clientId: Optional[str] = None,
    ):
        if chunkSize <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunkSize}")

        self.transport = transport
        self.credentials = credentials
        self.chunkSize = chunkSize
        self.concurrency = concurrency
        self.retryPolicy = retryPolicy or RetryPolicy()
        self.crypto = crypto
        self.clientId = clientId or str(uuid.uuid4())
        self.verifier = IntegrityVerifier()

        self.executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix='archdrop')

    def close(self):
        self.executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, excType, excVal, excTb):
        self.close()

    @property
    def token(self):
        return self.credentials.token

    async def _call(self, func, *args):
        """Run a blocking call (transport, disk) on the engine's thread pool"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(func, *args))

    def _reportProgress(self, entry, completedChunks, totalChunks, bytesTransferred):
        TransferEvent.chunkProgress.trigger(
            fileIndex=entry.index if entry else None,
            fileName=entry.name if entry else None,
            completedChunks=completedChunks,
            totalChunks=totalChunks,
            bytesTransferred=bytesTransferred,
        )

    def _fail(self, entry, error):
        if isinstance(error, TransferError) and entry is not None:
            error.annotate(fileIndex=entry.index, fileName=entry.name)

        logger.error(f"[Engine] {error.describe() if isinstance(error, TransferError) else error}")
        TransferEvent.fileFailed.trigger(entry=entry, error=error)

    # ------------------------------------------------------------------
    # Manifest mode: upload
    # ------------------------------------------------------------------

    async def uploadFile(self, entry: FileEntry, reader: Optional[FileSourceReader] = None) -> TransferResult:
        """Encrypt and upload one file, then ask the receiver to finalize it"""
        try:
            if reader is None:
                if entry.sourcePath is None:
                    raise ProtocolViolation("File entry has no local source")
                reader = FileSourceReader(entry.sourcePath)

            if reader.size != entry.size:
                raise ProtocolViolation(f"File size changed since manifest: {entry.size} -> {reader.size}")

            storedSize, storedMtime = reader.size, reader.mtime
            cipher = ChunkCipher(self.credentials.key, entry.nonceBase, self.crypto)
            totalChunks = entry.chunkCount(self.chunkSize)
            progress = {'chunks': 0, 'bytes': 0}

            async def worker(span):
                plaintext = await self._call(reader.readChunk, span.index, self.chunkSize)

                # Sealed once, retries resend the same ciphertext
                ciphertext = cipher.encryptChunk(span.index, plaintext)

                await self.retryPolicy.attempt(
                    lambda: self._call(
                        self.transport.uploadChunk, self.token, entry, span.index, totalChunks, ciphertext,
                        self.clientId
                    ),
                    fileIndex=entry.index,
                    chunkIndex=span.index,
                )
                return len(plaintext)

            def onResult(span, length):
                progress['chunks'] += 1
                progress['bytes'] += length
                self._reportProgress(entry, progress['chunks'], totalChunks, progress['bytes'])

            scheduler = BoundedScheduler(self.concurrency)
            await scheduler.run(reader.spans(self.chunkSize), worker, onResult)

            try:
                reader.validateIntegrity(storedSize, storedMtime, raiseOnError=True)
            except RuntimeError as e:
                raise ProtocolViolation(f"Source changed during transfer: {e}")

            response = await self.retryPolicy.attempt(
                lambda: self._call(self.transport.finalizeFile, self.token, entry.relativePath, self.clientId),
                fileIndex=entry.index,
            )

            result = TransferResult(
                fileIndex=entry.index,
                name=entry.name,
                size=entry.size,
                digest=entry.sha256,
                path=reader.path,
                expectedDigest=(response or {}).get('sha256'),
            )

            # The receiver reports the digest of what it stored, when it computes one
            if result.expectedDigest and result.digest:
                self.verifier.verifyResult(result)

        except Exception as e:
            self._fail(entry, e)
            raise

        logger.info(f"[Engine] Uploaded {entry.relativePath} ({entry.size} bytes, {totalChunks} chunks)")
        TransferEvent.fileComplete.trigger(result=result)
        return result

    async def uploadManifest(self, manifest: Manifest, atomic: bool = False) -> List[FileOutcome]:
        await self.retryPolicy.attempt(
            lambda: self._call(self.transport.publishManifest, self.token, manifest.toUploadRequest(), self.clientId)
        )
        return await self._runManifest(manifest, self.uploadFile, atomic, service='receive')

    # ------------------------------------------------------------------
    # Manifest mode: download
    # ------------------------------------------------------------------

    async def downloadFile(
        self, entry: FileEntry, sink: Optional[ChunkSink] = None, expectedDigest: Optional[str] = None
    ) -> TransferResult:
        """Download, decrypt and verify one file

        Without a sink the plaintext is returned in result.data. With a sink the plaintext is
        written in order as chunks arrive and the sink is committed only after the digest
        check, any failure aborts it.
        """
        totalChunks = entry.chunkCount(self.chunkSize)
        reassembler = Reassembler(totalChunks, sink)

        try:
            expectedDigest = expectedDigest or entry.sha256
            if not expectedDigest:
                expectedDigest = await self.retryPolicy.attempt(
                    lambda: self._call(self.transport.fetchFileHash, self.token, entry.index, self.clientId),
                    fileIndex=entry.index,
                )

            cipher = ChunkCipher(self.credentials.key, entry.nonceBase, self.crypto)
            progress = {'chunks': 0, 'bytes': 0}

            async def worker(chunkIndex):
                data = await self.retryPolicy.attempt(
                    lambda: self._call(self.transport.fetchChunk, self.token, entry.index, chunkIndex, self.clientId),
                    fileIndex=entry.index,
                    chunkIndex=chunkIndex,
                )

                expectedLength = min(self.chunkSize, entry.size - chunkIndex * self.chunkSize)
                if len(data) != expectedLength + TAG_LENGTH:
                    raise ProtocolViolation(
                        f"Expected {expectedLength + TAG_LENGTH} bytes, got {len(data)}", chunkIndex=chunkIndex
                    )

                return cipher.decryptChunk(chunkIndex, data)

            def onResult(chunkIndex, plaintext):
                reassembler.accept(chunkIndex, plaintext)
                progress['chunks'] += 1
                progress['bytes'] += len(plaintext)
                self._reportProgress(entry, progress['chunks'], totalChunks, progress['bytes'])

            scheduler = BoundedScheduler(self.concurrency)
            await scheduler.run(range(totalChunks), worker, onResult)

            data, digest = reassembler.finish()
            result = TransferResult(
                fileIndex=entry.index,
                name=entry.name,
                size=entry.size,
                digest=digest,
                data=data,
                expectedDigest=expectedDigest,
            )
            self.verifier.verifyResult(result)

            if sink is not None:
                result.path = sink.commit()

        except BaseException as e:
            reassembler.abort()
            if isinstance(e, Exception):
                self._fail(entry, e)
            raise

        logger.info(f"[Engine] Downloaded {entry.relativePath} ({entry.size} bytes, {totalChunks} chunks)")
        TransferEvent.fileComplete.trigger(result=result)
        return result

    async def fetchManifest(self) -> Manifest:
        data = await self.retryPolicy.attempt(
            lambda: self._call(self.transport.fetchManifest, self.token, self.clientId)
        )
        return Manifest.fromDict(data)

    async def downloadManifest(
        self, outputDir: str, manifest: Optional[Manifest] = None, atomic: bool = False
    ) -> List[FileOutcome]:
        """Download every file of the manifest below outputDir"""
        if manifest is None:
            manifest = await self.fetchManifest()

        async def downloadEntry(entry):
            try:
                sink = FileSink(resolveOutputPath(outputDir, entry.relativePath))
            except TransferError as e:
                self._fail(entry, e)
                raise
            return await self.downloadFile(entry, sink)

        return await self._runManifest(manifest, downloadEntry, atomic, service='send')

    async def _runManifest(self, manifest, transferFile, atomic, service) -> List[FileOutcome]:
        outcomes = []

        for entry in manifest:
            try:
                outcomes.append(FileOutcome(entry, result=await transferFile(entry)))
            except TransferError as e:
                if atomic:
                    raise
                outcomes.append(FileOutcome(entry, error=e))

        if all(outcome.ok for outcome in outcomes):
            await self.retryPolicy.attempt(
                lambda: self._call(self.transport.complete, self.token, service, self.clientId)
            )
        else:
            failed = [outcome.entry.relativePath for outcome in outcomes if not outcome.ok]
            logger.warning(f"[Engine] {len(failed)} of {len(outcomes)} files failed: {', '.join(failed)}")

        TransferEvent.transferComplete.trigger(outcomes=outcomes)
        return outcomes

    # ------------------------------------------------------------------
    # Stream mode
    # ------------------------------------------------------------------

    def _streamNonce(self):
        if self.credentials.nonceBase is None:
            raise ProtocolViolation("Stream transfers need a nonce in the credentials")
        return self.credentials.nonceBase

    def sendStream(self, reader: SourceReader) -> TransferResult:
        """Encrypt a sequential source into frames and upload them as one request body"""
        encryptor = StreamEncryptor(self.credentials.key, self._streamNonce(), self.chunkSize, self.crypto)
        hasher = hashlib.sha256()
        totals = {'chunks': 0, 'bytes': 0}
        totalChunks = countChunks(reader.size, self.chunkSize) if reader.size is not None else None

        def frames():
            for plaintext in reader.iterChunks(self.chunkSize):
                hasher.update(plaintext)
                frame = encryptor.encryptChunk(plaintext)
                totals['chunks'] += 1
                totals['bytes'] += len(plaintext)
                self._reportProgress(None, totals['chunks'], totalChunks, totals['bytes'])
                yield frame

        try:
            self.transport.uploadStream(self.token, frames())
        except Exception as e:
            self._fail(None, e)
            raise

        logger.info(f"[Engine] Stream sent: {totals['bytes']} bytes in {totals['chunks']} frames")
        return TransferResult(
            fileIndex=None, name=reader.contentName, size=totals['bytes'], digest=hasher.hexdigest()
        )

    def receiveStream(
        self, chunks: Iterable[bytes], sink: ChunkSink, expectedDigest: Optional[str] = None, name: str = None
    ) -> TransferResult:
        """Decrypt a framed stream into sink, frames strictly in order

        The digest is verified when expectedDigest is given. The sink is committed only on
        success.
        """
        decryptor = StreamDecryptor(self.credentials.key, self._streamNonce(), self.chunkSize, self.crypto)
        hasher = hashlib.sha256()
        size = 0

        try:
            for data in chunks:
                plaintext = decryptor.processChunk(data)
                if plaintext:
                    sink.write(plaintext)
                    hasher.update(plaintext)
                    size += len(plaintext)
                    self._reportProgress(None, decryptor.chunkIndex, None, size)

            decryptor.flush()

            result = TransferResult(
                fileIndex=None, name=name, size=size, digest=hasher.hexdigest(), expectedDigest=expectedDigest
            )
            if expectedDigest:
                self.verifier.verifyResult(result)
            else:
                logger.warning(
                    f"[Engine] Stream committed without an expected digest, a stream cut at a frame boundary "
                    f"would go unnoticed (sha256 {result.digest})"
                )

            result.path = sink.commit()

        except BaseException as e:
            sink.abort()
            if isinstance(e, Exception):
                self._fail(None, e)
            raise

        logger.info(f"[Engine] Stream received: {size} bytes in {decryptor.chunkIndex} frames")
        return result
