"""
NoteFlow Backend - Transient Intake Store
===========================================

What:  Holds an uploaded binary just long enough to inspect, compress and
       upload it, then guarantees every scratch artifact is removed.
How:   Two backings behind one interface:
         memory: bytes stay resident in the UploadCandidate
         disk:   bytes are written (aiofiles) to a collision-free scratch file
Who:   Created once at startup; used by IntakeService for every operation.

Artifact ownership:
    An UploadCandidate tracks the files it OWNS (scratch copy, compressed
    derivative). release() deletes exactly those. Files it merely references,
    like a legacy upload adopted by the backfill job, are never deleted.

Scratch names:
    <UTC timestamp>_<12 random hex chars>_<sanitized original name>
    e.g. 20240115T120000123456_9f2c4e1a7b3d_lecture-notes.pdf
    Concurrent operations cannot collide on a name.
"""

import logging
import os
import re
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Union

import aiofiles

from noteflow.exceptions import FileStorageError

if TYPE_CHECKING:
    from noteflow.services.compression.base import CompressionOutcome

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 120
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
READ_CHUNK_BYTES = 64 * 1024


def sanitize_filename(name: Optional[str], default: str = "upload") -> str:
    """
    Reduce an untrusted client filename to something safe for the filesystem.

    - Directory components are dropped (both / and \\ separators)
    - Anything outside [A-Za-z0-9._-] becomes a single '-'
    - Leading dots are stripped (no hidden files, no '..')
    - The stem is truncated so the result fits MAX_NAME_LENGTH, keeping the extension

    >>> sanitize_filename("../../etc/passwd")
    'passwd'
    >>> sanitize_filename("Week 3: Graphs.PDF")
    'Week-3-Graphs.PDF'
    """
    base = (name or "").replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_CHARS.sub("-", base).strip("-").lstrip(".")
    if not cleaned:
        return default

    stem, dot, ext = cleaned.rpartition(".")
    if not dot or not stem:
        return cleaned[:MAX_NAME_LENGTH]
    ext = ext[:16]
    return f"{stem[: MAX_NAME_LENGTH - len(ext) - 1]}.{ext}"


def scratch_name(suffix: str = "", label: str = "") -> str:
    """Collision-free scratch filename: timestamp + random component + label/suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    token = secrets.token_hex(6)
    middle = f"_{label}" if label else ""
    return f"{stamp}_{token}{middle}{suffix}"


async def read_chunks(reader, chunk_size: int = READ_CHUNK_BYTES) -> AsyncIterator[bytes]:
    """Yield from anything with an async read(n), e.g. a Starlette UploadFile."""
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        yield chunk


class UploadCandidate:
    """
    One file moving through the intake pipeline.

    Exactly one of source_bytes / source_path is set at any time. Compression
    may swap one for the other (bytes in, derivative file out, or the reverse).

    Attributes:
        original_name:  Sanitized client filename
        media_type:     Declared media type (untrusted)
        size_bytes:     Measured size of the current source
        artifacts:      Paths this candidate owns and must delete on release
    """

    def __init__(
        self,
        original_name: str,
        media_type: str,
        size_bytes: int,
        source_bytes: Optional[bytes] = None,
        source_path: Optional[Path] = None,
        artifacts: Optional[List[Path]] = None,
    ):
        if (source_bytes is None) == (source_path is None):
            raise ValueError("exactly one of source_bytes or source_path is required")
        self.original_name = original_name
        self.media_type = media_type
        self.size_bytes = size_bytes
        self.source_bytes = source_bytes
        self.source_path = source_path
        self.artifacts: List[Path] = list(artifacts or [])
        self.was_compressed = False

    @property
    def resident(self) -> bool:
        """True when the current source lives in memory."""
        return self.source_bytes is not None

    @property
    def source(self) -> Union[bytes, Path]:
        return self.source_bytes if self.source_bytes is not None else self.source_path

    def own(self, path: Path) -> None:
        """Register a scratch file for deletion on release."""
        if path not in self.artifacts:
            self.artifacts.append(path)

    def replace_with(self, outcome: "CompressionOutcome") -> None:
        """
        Swap the current source for a compression result and re-measure.

        The previous source stays in `artifacts` (if owned) so release()
        still removes it.
        """
        if outcome.result_path is not None:
            self.own(outcome.result_path)
            self.source_path = outcome.result_path
            self.source_bytes = None
            self.size_bytes = outcome.result_path.stat().st_size
        else:
            self.source_bytes = outcome.result_bytes
            self.source_path = None
            self.size_bytes = len(outcome.result_bytes)
        self.was_compressed = outcome.was_compressed

    def __repr__(self) -> str:
        where = "memory" if self.resident else str(self.source_path)
        return f"<UploadCandidate(name='{self.original_name}', size={self.size_bytes}, at={where})>"


class TransientIntakeStore:
    """
    Scratch area for in-flight uploads.

    Lifecycle of a candidate:
        1. receive() / receive_stream() / adopt()  → UploadCandidate
        2. allocate()                              → scratch paths for derivatives (compressors)
        3. release()                               → every owned artifact deleted, on every exit path
    """

    BACKINGS = ("memory", "disk")

    def __init__(self, scratch_dir: Union[str, Path], backing: str = "memory"):
        if backing not in self.BACKINGS:
            raise ValueError(f"Unknown intake backing '{backing}'. Choose from: {self.BACKINGS}")
        self.scratch_dir = Path(scratch_dir).resolve()
        self.backing = backing
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        logger.info("TransientIntakeStore ready at %s (backing=%s)", self.scratch_dir, backing)

    def allocate(self, suffix: str = "", label: str = "") -> Path:
        """Return a fresh, unused path inside the scratch directory."""
        return self.scratch_dir / scratch_name(suffix=suffix, label=label)

    async def receive(
        self,
        content: bytes,
        declared_name: Optional[str],
        declared_media_type: Optional[str],
    ) -> UploadCandidate:
        """
        Take ownership of freshly uploaded bytes.

        The size is measured from the content itself; the client's
        Content-Length is never trusted.

        Raises:
            FileStorageError: disk backing could not write the scratch file
        """
        safe_name = sanitize_filename(declared_name)
        media_type = (declared_media_type or "").strip()

        if self.backing == "memory":
            return UploadCandidate(
                original_name=safe_name,
                media_type=media_type,
                size_bytes=len(content),
                source_bytes=content,
            )

        path = self.allocate(label=safe_name)
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to write scratch file %s: %s", path.name, str(e))
            self._remove(path)
            raise FileStorageError(
                message="Failed to stage the uploaded file. Please try again.",
                context={"path": str(path), "os_error": str(e)},
            )

        logger.debug("Staged %d bytes at %s", len(content), path.name)
        return UploadCandidate(
            original_name=safe_name,
            media_type=media_type,
            size_bytes=len(content),
            source_path=path,
            artifacts=[path],
        )

    async def receive_stream(
        self,
        chunks: AsyncIterator[bytes],
        declared_name: Optional[str],
        declared_media_type: Optional[str],
    ) -> UploadCandidate:
        """
        Like receive(), but consumes the upload chunk by chunk.

        The disk backing never holds more than one chunk in memory. If the
        iterator raises (size ceiling, client disconnect, cancellation) the
        partial scratch file is removed before the error propagates.
        """
        safe_name = sanitize_filename(declared_name)
        media_type = (declared_media_type or "").strip()

        if self.backing == "memory":
            buffer = bytearray()
            async for chunk in chunks:
                buffer.extend(chunk)
            return UploadCandidate(
                original_name=safe_name,
                media_type=media_type,
                size_bytes=len(buffer),
                source_bytes=bytes(buffer),
            )

        path = self.allocate(label=safe_name)
        size = 0
        try:
            async with aiofiles.open(path, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    size += len(chunk)
        except OSError as e:
            logger.error("Failed to write scratch file %s: %s", path.name, str(e))
            self._remove(path)
            raise FileStorageError(
                message="Failed to stage the uploaded file. Please try again.",
                context={"path": str(path), "os_error": str(e)},
            )
        except BaseException:
            self._remove(path)
            raise

        logger.debug("Streamed %d bytes to %s", size, path.name)
        return UploadCandidate(
            original_name=safe_name,
            media_type=media_type,
            size_bytes=size,
            source_path=path,
            artifacts=[path],
        )

    def adopt(
        self,
        path: Union[str, Path],
        declared_name: Optional[str],
        declared_media_type: Optional[str],
    ) -> UploadCandidate:
        """
        Wrap an existing file without taking ownership of it.

        Used by the backfill job for legacy uploads: the original file must
        survive the operation, only derivatives created from it are removed.
        """
        path = Path(path)
        return UploadCandidate(
            original_name=sanitize_filename(declared_name or path.name),
            media_type=(declared_media_type or "").strip(),
            size_bytes=path.stat().st_size,
            source_path=path,
        )

    def release(self, candidate: UploadCandidate) -> None:
        """
        Delete every artifact the candidate owns.

        Synchronous so it cannot be interrupted by task cancellation.
        Never raises: failures are logged and left for a maintenance sweep.
        """
        for path in candidate.artifacts:
            self._remove(path)
        candidate.artifacts.clear()

    def _remove(self, path: Path) -> None:
        try:
            os.remove(path)
            logger.debug("Removed scratch artifact %s", path.name)
        except FileNotFoundError:
            logger.debug("Scratch artifact already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to remove scratch artifact %s: %s", path, str(e))

    def list_artifacts(self) -> List[Path]:
        """Files currently present in the scratch directory (diagnostics, tests)."""
        return sorted(p for p in self.scratch_dir.iterdir() if p.is_file())
