"""
NoteFlow Backend - Batch Backfill Job
=======================================

What:  Walks notes whose file never reached remote storage and pushes each
       legacy local file through the intake pipeline, recording the durable
       URL on success.
How:   Sequential: one record at a time, each with its own intake operation.
       Per-record problems become counters; only an unreachable record store
       aborts the run.
Who:   Driven by the noteflow-backfill CLI (noteflow.cli.backfill).

Per-record outcomes:

    no file_path                              → skipped_no_source_path
    file missing / outside UPLOADS_ROOT       → skipped_missing_local_file
    dry run                                   → migrated (nothing uploaded)
    IntakeError TOO_LARGE / STILL_TOO_LARGE   → skipped_too_large
    IntakeError COMPRESSION_UNAVAILABLE       → skipped_compression_failed
    any other per-record failure              → failed
    URL recorded                              → migrated

Idempotence:
    Only rows with an empty file_url are scanned, and a row is updated only
    after its upload succeeded. Running the job again processes exactly the
    rows that did not succeed the first time.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from noteflow.exceptions import (
    IntakeError,
    IntakeFailure,
    NoteFlowError,
    RecordStoreUnavailableError,
)
from noteflow.services.intake_service import IntakeService
from noteflow.services.note_store import NoteRecordStore, PendingNote
from noteflow.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class BackfillCursor:
    """Counters for one backfill run."""

    scanned: int = 0
    migrated: int = 0
    skipped_missing_local_file: int = 0
    skipped_no_source_path: int = 0
    skipped_too_large: int = 0
    skipped_compression_failed: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


# Per-record status strings handed to on_record
MIGRATED = "migrated"
WOULD_MIGRATE = "would-migrate"
SKIPPED_NO_PATH = "skipped-no-path"
SKIPPED_MISSING_FILE = "skipped-missing-file"
SKIPPED_TOO_LARGE = "skipped-too-large"
SKIPPED_COMPRESSION_FAILED = "skipped-compression-failed"
FAILED = "failed"

RecordCallback = Callable[[PendingNote, str, str], None]


class BackfillJob:
    def __init__(
        self,
        store: NoteRecordStore,
        intake: IntakeService,
        uploads_root: Union[str, Path],
        object_store: Optional[ObjectStore] = None,
        on_record: Optional[RecordCallback] = None,
    ):
        self.store = store
        self.intake = intake
        self.uploads_root = Path(uploads_root).resolve()
        self.object_store = object_store or intake.object_store
        self.on_record = on_record

    def resolve_local_path(self, relative: str) -> Optional[Path]:
        """
        Resolve a stored file_path under UPLOADS_ROOT.

        Returns None when the path escapes the root or is not a regular file.
        """
        candidate = (self.uploads_root / relative).resolve()
        try:
            candidate.relative_to(self.uploads_root)
        except ValueError:
            logger.warning("file_path escapes the uploads root: %s", relative)
            return None
        return candidate if candidate.is_file() else None

    async def run(self, dry_run: bool = False, limit: int = 0) -> BackfillCursor:
        """
        Process every note that lacks a durable URL.

        Args:
            dry_run: Count what would be migrated without uploading or writing
            limit:   Stop once this many records were migrated (0 = no limit).
                     The record visited when the limit is reached still counts
                     as scanned.

        Raises:
            RecordStoreUnavailableError: the record store became unreachable
        """
        cursor = BackfillCursor()
        logger.info(
            "Backfill started (dry_run=%s, limit=%s, uploads_root=%s)",
            dry_run,
            limit or "none",
            self.uploads_root,
        )

        async for note in self.store.find_missing_url():
            cursor.scanned += 1
            if limit and cursor.migrated >= limit:
                break
            await self._process(note, cursor, dry_run)

        logger.info("Backfill finished: %s", cursor.as_dict())
        return cursor

    async def _process(self, note: PendingNote, cursor: BackfillCursor, dry_run: bool) -> None:
        if not note.local_source_path:
            cursor.skipped_no_source_path += 1
            self._report(note, SKIPPED_NO_PATH)
            return

        local_path = self.resolve_local_path(note.local_source_path)
        if local_path is None:
            cursor.skipped_missing_local_file += 1
            self._report(note, SKIPPED_MISSING_FILE, note.local_source_path)
            return

        if dry_run:
            cursor.migrated += 1
            self._report(note, WOULD_MIGRATE, note.local_source_path)
            return

        try:
            reference = await self.intake.ingest_file(
                local_path,
                note.original_name or local_path.name,
                note.declared_media_type,
                metadata={"note_id": str(note.id)},
            )
        except IntakeError as e:
            if e.kind in (IntakeFailure.TOO_LARGE, IntakeFailure.STILL_TOO_LARGE):
                cursor.skipped_too_large += 1
                self._report(note, SKIPPED_TOO_LARGE, e.message)
            elif e.kind == IntakeFailure.COMPRESSION_UNAVAILABLE:
                cursor.skipped_compression_failed += 1
                self._report(note, SKIPPED_COMPRESSION_FAILED, e.message)
            else:
                cursor.failed += 1
                self._report(note, FAILED, e.message)
            return
        except (NoteFlowError, OSError) as e:
            logger.error("Backfill of %s failed: %s", note.id, str(e))
            cursor.failed += 1
            self._report(note, FAILED, str(e))
            return
        except Exception as e:
            logger.error("Unexpected error while backfilling %s", note.id, exc_info=True)
            cursor.failed += 1
            self._report(note, FAILED, f"{type(e).__name__}: {e}")
            return

        try:
            updated = await self.store.set_durable_url(note.id, reference.url, reference.provider_object_id)
        except RecordStoreUnavailableError:
            await self._discard_orphan(reference.provider_object_id)
            raise
        except NoteFlowError as e:
            await self._discard_orphan(reference.provider_object_id)
            cursor.failed += 1
            self._report(note, FAILED, e.message)
            return
        except Exception as e:
            logger.error("Unexpected error recording the URL of %s", note.id, exc_info=True)
            await self._discard_orphan(reference.provider_object_id)
            cursor.failed += 1
            self._report(note, FAILED, f"{type(e).__name__}: {e}")
            return

        if not updated:
            # Row deleted while we were uploading
            await self._discard_orphan(reference.provider_object_id)
            cursor.failed += 1
            self._report(note, FAILED, "note no longer exists")
            return

        cursor.migrated += 1
        self._report(note, MIGRATED, reference.url)

    async def _discard_orphan(self, provider_object_id: str) -> None:
        try:
            await self.object_store.delete(provider_object_id)
        except NoteFlowError as e:
            logger.warning("Could not delete orphaned object %s: %s", provider_object_id, e.message)
        except Exception:
            logger.warning("Could not delete orphaned object %s", provider_object_id, exc_info=True)

    def _report(self, note: PendingNote, status: str, detail: str = "") -> None:
        logger.debug("Backfill %s %s %s", note.id, status, detail)
        if self.on_record is not None:
            self.on_record(note, status, detail)
