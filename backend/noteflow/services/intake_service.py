"""
NoteFlow Backend - Upload Orchestrator
========================================

What:  Turns an uploaded binary into a durable, fetchable StoredFileReference,
       or fails with a single IntakeError saying why.
How:   A per-operation state machine over the injected components:

        Received ──► Classified ──► Compressing ──► Uploading ──► Cleaned ──► Done
                        │               │               │
                        └───────────────┴───────────────┴──► Failed(kind) ──► Cleaned

       - Received:    candidate staged in the TransientIntakeStore
       - Classified:  classify() against PolicyLimits
       - Compressing: only when needs_compression; the smaller of original
                      and derivative is kept
       - Uploading:   ObjectStore.upload() from disk or memory
       - Cleaned:     every owned scratch artifact removed (finally block)

Who:   Called by NoteService for HTTP uploads and by BackfillJob for legacy files.

Guarantees:
    - A non-compressible file over the hard limit never reaches the compressor
      or the uploader.
    - Nothing above the hard limit is ever uploaded.
    - Scratch artifacts are removed on every path, including cancellation.
    - ingest_stream stops receiving once an upload passes the size it could be
      accepted at, so an oversized body is never held in full.
    - The Note Record Store is never touched here; callers persist the result.
    - No automatic retries. Every attempt mints a new remote object id, so
      a caller may re-submit after a retryable failure.
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from noteflow.exceptions import (
    CompressionError,
    CompressionFailedError,
    IntakeError,
    IntakeFailure,
    UploadError,
    UploadTransientError,
)
from noteflow.schemas.note import StoredFileReference
from noteflow.services.classifier import PolicyLimits, classify, intake_ceiling, normalize_media_type
from noteflow.services.compression.base import Compressor
from noteflow.services.scratch import TransientIntakeStore, UploadCandidate, read_chunks
from noteflow.services.storage.base import ObjectStore, UploadOptions

logger = logging.getLogger(__name__)


class IntakeState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    CLEANED = "cleaned"
    DONE = "done"
    FAILED = "failed"


def _mb(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):.1f}MB"


class IntakeService:
    """
    The upload orchestrator.

    Components are injected so tests can substitute fakes and so the HTTP
    app and the backfill CLI can share one wiring function.
    """

    def __init__(
        self,
        scratch: TransientIntakeStore,
        compressor: Compressor,
        object_store: ObjectStore,
        limits: PolicyLimits,
        folder: str = "noteflow",
        compression_timeout: Optional[float] = 120.0,
        upload_timeout: Optional[float] = 60.0,
        compression_preset: Optional[str] = None,
    ):
        self.scratch = scratch
        self.compressor = compressor
        self.object_store = object_store
        self.limits = limits
        self.folder = folder
        self.compression_timeout = compression_timeout
        self.upload_timeout = upload_timeout
        self.compression_preset = compression_preset

    # ── Public API ────────────────────────────────────────────────────────

    async def ingest(
        self,
        content: bytes,
        declared_name: Optional[str],
        declared_media_type: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredFileReference:
        """
        Ingest freshly uploaded bytes.

        Args:
            content:             Entire uploaded body
            declared_name:       Client filename (untrusted, sanitized)
            declared_media_type: Client media type (untrusted)
            metadata:            Free-form context for log lines only

        Returns:
            StoredFileReference with a non-empty url

        Raises:
            IntakeError: kind tells the caller why (see IntakeFailure)
            FileStorageError: the disk backing could not stage the upload
        """
        op_id = uuid.uuid4().hex[:8]
        if not content:
            self._transition(op_id, IntakeState.FAILED, "empty file")
            raise IntakeError(IntakeFailure.EMPTY_FILE, "The uploaded file is empty")

        candidate = await self.scratch.receive(content, declared_name, declared_media_type)
        return await self._process(op_id, candidate, metadata)

    async def ingest_stream(
        self,
        reader,
        declared_name: Optional[str],
        declared_media_type: Optional[str],
        size_hint: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredFileReference:
        """
        Ingest an upload that is still arriving, e.g. a Starlette UploadFile.

        Nothing is read when size_hint already exceeds what classify() could
        accept. Otherwise the body is staged chunk by chunk and receiving stops
        as soon as the running total passes that ceiling, so an oversized
        upload is never held in full.

        Args:
            reader:     Object with an async read(n)
            size_hint:  Client-reported size (file.size or Content-Length);
                        only used to refuse early, never to accept
        """
        op_id = uuid.uuid4().hex[:8]
        ceiling = intake_ceiling(normalize_media_type(declared_media_type), self.limits)
        if size_hint is not None and ceiling is not None and size_hint > ceiling:
            self._transition(op_id, IntakeState.FAILED, f"declared size {size_hint} over {ceiling}")
            raise self._too_large(size_hint)

        async def bounded():
            received = 0
            async for chunk in read_chunks(reader):
                received += len(chunk)
                if ceiling is not None and received > ceiling:
                    raise self._too_large(received, partial=True)
                yield chunk

        try:
            candidate = await self.scratch.receive_stream(bounded(), declared_name, declared_media_type)
        except IntakeError as e:
            self._transition(op_id, IntakeState.FAILED, f"{e.kind.value}: {e.message}")
            raise

        if candidate.size_bytes == 0:
            self.scratch.release(candidate)
            self._transition(op_id, IntakeState.FAILED, "empty file")
            raise IntakeError(IntakeFailure.EMPTY_FILE, "The uploaded file is empty")
        return await self._process(op_id, candidate, metadata)

    async def ingest_file(
        self,
        path: Union[str, Path],
        declared_name: Optional[str],
        declared_media_type: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredFileReference:
        """
        Ingest an existing file without taking ownership of it.

        The file at `path` is left in place; only derivatives created while
        processing it are removed.
        """
        op_id = uuid.uuid4().hex[:8]
        candidate = self.scratch.adopt(path, declared_name, declared_media_type)
        if candidate.size_bytes == 0:
            self._transition(op_id, IntakeState.FAILED, "empty file")
            raise IntakeError(IntakeFailure.EMPTY_FILE, "The source file is empty")
        return await self._process(op_id, candidate, metadata)

    # ── State Machine ─────────────────────────────────────────────────────

    async def _process(
        self,
        op_id: str,
        candidate: UploadCandidate,
        metadata: Optional[Dict[str, Any]],
    ) -> StoredFileReference:
        start_time = time.time()
        self._transition(op_id, IntakeState.RECEIVED, repr(candidate))
        original_size = candidate.size_bytes
        try:
            media_type = normalize_media_type(candidate.media_type) or "application/octet-stream"
            classification = classify(media_type, candidate.size_bytes, self.limits)
            self._transition(op_id, IntakeState.CLASSIFIED, classification.reason)

            if not classification.eligible:
                raise self._too_large(candidate.size_bytes)

            if classification.needs_compression:
                self._transition(op_id, IntakeState.COMPRESSING)
                await self._compress(op_id, candidate)

            self._transition(op_id, IntakeState.UPLOADING, f"{candidate.size_bytes} bytes")
            reference = await self._upload(candidate, media_type)
        except IntakeError as e:
            self._transition(op_id, IntakeState.FAILED, f"{e.kind.value}: {e.message}")
            raise
        finally:
            self.scratch.release(candidate)
            self._transition(op_id, IntakeState.CLEANED)

        self._transition(op_id, IntakeState.DONE)
        logger.info(
            "[%s] Stored '%s' (%d → %d bytes, compressed=%s) in %.0fms%s",
            op_id,
            candidate.original_name,
            original_size,
            reference.size_at_rest,
            reference.was_compressed,
            (time.time() - start_time) * 1000,
            f" {metadata}" if metadata else "",
        )
        return reference

    async def _compress(self, op_id: str, candidate: UploadCandidate) -> None:
        """
        Compress the candidate in place, keeping whichever version is smaller.

        Raises:
            IntakeError(STILL_TOO_LARGE): the kept version is over the hard limit
            IntakeError(COMPRESSION_UNAVAILABLE): compression failed and the
                original is itself over the hard limit
        """
        hard = self.limits.hard_limit_bytes
        original_size = candidate.size_bytes
        try:
            outcome = await asyncio.wait_for(
                self.compressor.compress(candidate.source, self.scratch.scratch_dir, self.compression_preset),
                timeout=self.compression_timeout,
            )
        except asyncio.TimeoutError:
            failure: CompressionError = CompressionFailedError(
                message=f"Compression exceeded {self.compression_timeout}s"
            )
            self._after_compression_failure(op_id, candidate, failure)
            return
        except CompressionError as e:
            self._after_compression_failure(op_id, candidate, e)
            return

        if outcome.result_size_bytes < original_size:
            candidate.replace_with(outcome)
            logger.info(
                "[%s] Compressed %s → %s with %s",
                op_id,
                _mb(original_size),
                _mb(candidate.size_bytes),
                self.compressor.name,
            )
        else:
            # Derivative did not help: keep the original, still own the derivative
            if outcome.result_path is not None:
                candidate.own(outcome.result_path)
            logger.info(
                "[%s] Compression did not reduce size (%d → %d bytes); keeping original",
                op_id,
                original_size,
                outcome.result_size_bytes,
            )

        if candidate.size_bytes > hard:
            raise IntakeError(
                IntakeFailure.STILL_TOO_LARGE,
                f"Compressed PDF is {_mb(candidate.size_bytes)}, above the {_mb(hard)} limit",
                context={"size_bytes": candidate.size_bytes, "original_size_bytes": original_size},
            )

    def _after_compression_failure(
        self,
        op_id: str,
        candidate: UploadCandidate,
        error: CompressionError,
    ) -> None:
        hard = self.limits.hard_limit_bytes
        if candidate.size_bytes <= hard:
            logger.warning(
                "[%s] Compression failed (%s); uploading the %s original",
                op_id,
                error.message,
                _mb(candidate.size_bytes),
            )
            return
        logger.warning("[%s] Compression failed (%s) for a file over the limit", op_id, error.message)
        raise IntakeError(
            IntakeFailure.COMPRESSION_UNAVAILABLE,
            f"File is {_mb(candidate.size_bytes)} and could not be compressed below "
            f"{_mb(hard)}: {error.message}",
            cause=error,
            context={"size_bytes": candidate.size_bytes},
        )

    async def _upload(self, candidate: UploadCandidate, media_type: str) -> StoredFileReference:
        options = UploadOptions(
            folder=self.folder,
            resource_type_hint="auto",
            desired_filename=candidate.original_name,
            media_type=media_type,
        )
        try:
            stored = await asyncio.wait_for(
                self.object_store.upload(candidate.source, options),
                timeout=self.upload_timeout,
            )
        except asyncio.TimeoutError:
            error = UploadTransientError(message=f"Upload exceeded {self.upload_timeout}s")
            raise IntakeError(IntakeFailure.UPLOAD_ERROR, error.message, cause=error)
        except UploadError as e:
            raise IntakeError(
                IntakeFailure.UPLOAD_ERROR,
                e.message,
                cause=e,
                context={"error_type": type(e).__name__},
            )

        if not stored.url:
            raise IntakeError(IntakeFailure.UPLOAD_ERROR, "Remote storage returned no URL")

        return StoredFileReference(
            url=stored.url,
            provider_object_id=stored.provider_object_id,
            media_type_at_rest=media_type,
            size_at_rest=candidate.size_bytes,
            original_name=candidate.original_name,
            was_compressed=candidate.was_compressed,
        )

    def _too_large(self, size_bytes: int, partial: bool = False) -> IntakeError:
        size = f"over {_mb(size_bytes)}" if partial else _mb(size_bytes)
        return IntakeError(
            IntakeFailure.TOO_LARGE,
            f"File is {size}; the limit is {_mb(self.limits.hard_limit_bytes)}",
            context={"size_bytes": size_bytes},
        )

    def _transition(self, op_id: str, state: IntakeState, detail: str = "") -> None:
        logger.debug("[%s] → %s %s", op_id, state.value, detail)
