"""
NoteFlow Backend - Note Record Store
======================================

What:  The backfill job's narrow view of the notes table: find rows that
       still lack a durable URL, and record one once it exists.
How:   Async SQLAlchemy sessions from the shared Database handle. The scan is
       keyset-paged on (created_at, id), one short session per page, so
       rows updated mid-scan never shift the iteration.
Who:   BackfillJob and the noteflow-backfill CLI.

Failure mapping:
    Connection-level failures (OperationalError, InterfaceError, OSError)
    become RecordStoreUnavailableError, which aborts a backfill run. Other
    SQLAlchemy errors become DatabaseError, which fails one record.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional, Tuple

from sqlalchemy import and_, or_, select, text, update
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from noteflow.exceptions import DatabaseError, RecordStoreUnavailableError
from noteflow.models.note import Note

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class PendingNote:
    """A note whose file has not yet reached remote storage."""

    id: uuid.UUID
    title: str
    local_source_path: Optional[str]
    declared_media_type: Optional[str]
    original_name: Optional[str]


def _unavailable(exc: Exception) -> RecordStoreUnavailableError:
    return RecordStoreUnavailableError(
        message="The note record store is unreachable",
        context={"error_type": type(exc).__name__, "error": str(exc)[:300]},
    )


class NoteRecordStore:
    def __init__(self, session_factory: async_sessionmaker, page_size: int = DEFAULT_PAGE_SIZE):
        self.session_factory = session_factory
        self.page_size = page_size

    async def ping(self) -> None:
        """Raise RecordStoreUnavailableError unless a trivial query succeeds."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (OperationalError, InterfaceError, OSError) as e:
            raise _unavailable(e)

    async def find_missing_url(self) -> AsyncIterator[PendingNote]:
        """
        Yield every note with a NULL or empty file_url, oldest first.

        Each page is fetched after the previous page's last (created_at, id),
        so a row that receives a URL during the scan is simply not seen again.
        """
        last: Optional[Tuple[datetime, uuid.UUID]] = None
        while True:
            page = await self._fetch_page(last)
            if not page:
                return
            for row in page:
                yield PendingNote(
                    id=row.id,
                    title=row.title,
                    local_source_path=row.file_path,
                    declared_media_type=row.mime_type,
                    original_name=row.original_name,
                )
            tail = page[-1]
            last = (tail.created_at, tail.id)
            if len(page) < self.page_size:
                return

    async def _fetch_page(self, after: Optional[Tuple[datetime, uuid.UUID]]):
        stmt = (
            select(
                Note.id,
                Note.title,
                Note.file_path,
                Note.mime_type,
                Note.original_name,
                Note.created_at,
            )
            .where(or_(Note.file_url.is_(None), Note.file_url == ""))
            .order_by(Note.created_at, Note.id)
            .limit(self.page_size)
        )
        if after is not None:
            created_at, note_id = after
            stmt = stmt.where(
                or_(
                    Note.created_at > created_at,
                    and_(Note.created_at == created_at, Note.id > note_id),
                )
            )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return result.all()
        except (OperationalError, InterfaceError, OSError) as e:
            raise _unavailable(e)
        except SQLAlchemyError as e:
            logger.error("Backfill scan query failed: %s", str(e))
            raise DatabaseError(context={"operation": "find_missing_url"})

    async def set_durable_url(self, note_id: uuid.UUID, url: str, object_id: Optional[str] = None) -> bool:
        """
        Record the durable URL (and provider object id) on one note.

        Only file_url / file_object_id change. Returns False if the note no
        longer exists.
        """
        values = {"file_url": url}
        if object_id is not None:
            values["file_object_id"] = object_id
        try:
            async with self.session_factory() as session:
                result = await session.execute(update(Note).where(Note.id == note_id).values(**values))
                await session.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            raise _unavailable(e)
        except SQLAlchemyError as e:
            logger.error("Failed to record durable URL for %s: %s", note_id, str(e))
            raise DatabaseError(context={"operation": "set_durable_url", "note_id": str(note_id)})
        return result.rowcount > 0
