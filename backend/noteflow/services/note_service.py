"""
NoteFlow Backend - Note Service
=================================

What:  Note CRUD on top of the intake pipeline.
How:   Stateless; receives the db session, IntakeService and ObjectStore for
       each call.
Who:   Called by the routes in routes/notes.py.

Create Flow (POST /api/notes):
    ┌──────────┐    ┌──────────────┐    ┌──────────────┐
    │ Metadata │───▶│    Intake    │───▶│   Persist    │
    │ validated│    │ (classify,   │    │   Note row   │
    │ (schema) │    │  compress,   │    │              │
    └──────────┘    │  upload)     │    └──────────────┘
                    └──────────────┘

    Intake fails    → IntakeError propagates, no row is written
    Persist fails   → the freshly uploaded object is deleted (best effort),
                      DatabaseError propagates
"""

import logging
from datetime import datetime
from typing import Any, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import and_, desc, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from noteflow.exceptions import DatabaseError, NoteFlowError, NotFoundError
from noteflow.models.note import Note
from noteflow.schemas.note import NoteListResponse, NoteMetadata, NoteResponse
from noteflow.services.intake_service import IntakeService
from noteflow.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)

CURSOR_SEPARATOR = "|"


def make_cursor(note: Note) -> str:
    """Opaque position after `note`: '<created_at ISO>|<id>'."""
    return f"{note.created_at.isoformat()}{CURSOR_SEPARATOR}{note.id}"


def parse_cursor(cursor: Optional[str]) -> Optional[Tuple[datetime, UUID]]:
    """Inverse of make_cursor; None for a missing or malformed cursor."""
    if not cursor:
        return None
    stamp, _, note_id = cursor.partition(CURSOR_SEPARATOR)
    try:
        return datetime.fromisoformat(stamp), UUID(note_id)
    except ValueError:
        logger.debug("Ignoring invalid cursor %r", cursor)
        return None


class NoteService:
    """
    Business logic for notes.

    Error Handling Strategy:
        SQLAlchemy errors are wrapped in DatabaseError (generic message,
        details logged). Intake and lookup errors propagate as-is.
    """

    async def create_note(
        self,
        db: AsyncSession,
        intake: IntakeService,
        object_store: ObjectStore,
        metadata: NoteMetadata,
        upload: Union[bytes, Any],
        filename: Optional[str],
        media_type: Optional[str],
        size_hint: Optional[int] = None,
    ) -> NoteResponse:
        """
        Store the file durably, then create the note that points at it.

        `upload` is either the whole body as bytes or a reader with an async
        read(n) (an UploadFile), which is streamed into scratch.

        Raises:
            IntakeError:   the file could not be stored (no row written)
            DatabaseError: the row could not be written (object removed)
        """
        if isinstance(upload, (bytes, bytearray)):
            reference = await intake.ingest(bytes(upload), filename, media_type, metadata={"title": metadata.title})
        else:
            reference = await intake.ingest_stream(
                upload,
                filename,
                media_type,
                size_hint=size_hint,
                metadata={"title": metadata.title},
            )

        note = Note(
            title=metadata.title,
            subject=metadata.subject,
            semester=metadata.semester,
            description=metadata.description,
            file_url=reference.url,
            file_object_id=reference.provider_object_id,
            original_name=reference.original_name,
            mime_type=reference.media_type_at_rest,
            size_bytes=reference.size_at_rest,
            download_count=0,
        )
        try:
            db.add(note)
            await db.flush()
            await db.refresh(note)
        except SQLAlchemyError as e:
            logger.error("Failed to persist note for %s: %s", reference.provider_object_id, str(e))
            await self._delete_remote(object_store, reference.provider_object_id)
            raise DatabaseError(
                message="Could not save the note. Please try again.",
                context={"error_type": type(e).__name__},
            )

        logger.info("Note %s created (%s)", note.id, reference.url)
        return NoteResponse.model_validate(note)

    async def _get(self, db: AsyncSession, note_id: UUID) -> Note:
        try:
            result = await db.execute(select(Note).where(Note.id == note_id))
            note = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            )
        if note is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        return note

    async def get_note(self, db: AsyncSession, note_id: UUID) -> NoteResponse:
        note = await self._get(db, note_id)
        return NoteResponse.model_validate(note)

    async def list_notes(
        self,
        db: AsyncSession,
        limit: int = 6,
        cursor: Optional[str] = None,
        subject: Optional[str] = None,
        semester: Optional[str] = None,
        q: Optional[str] = None,
    ) -> NoteListResponse:
        """
        Newest notes first, keyset-paginated on (created_at, id).

        Filters:
            subject, semester: exact match
            q:                 case-insensitive substring of title, subject or semester

        Fetches limit + 1 rows so has_more needs no COUNT query. An
        unparseable cursor starts from the beginning.
        """
        query = select(Note).order_by(desc(Note.created_at), desc(Note.id))
        if subject:
            query = query.where(Note.subject == subject)
        if semester:
            query = query.where(Note.semester == semester)
        if q:
            query = query.where(
                or_(
                    Note.title.icontains(q, autoescape=True),
                    Note.subject.icontains(q, autoescape=True),
                    Note.semester.icontains(q, autoescape=True),
                )
            )
        position = parse_cursor(cursor)
        if position is not None:
            created_at, note_id = position
            query = query.where(
                or_(
                    Note.created_at < created_at,
                    and_(Note.created_at == created_at, Note.id < note_id),
                )
            )
        query = query.limit(limit + 1)

        try:
            result = await db.execute(query)
            notes = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing notes: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve notes. Please try again.",
                context={"error_type": type(e).__name__},
            )

        has_more = len(notes) > limit
        notes = notes[:limit]
        next_cursor = make_cursor(notes[-1]) if has_more and notes else None
        return NoteListResponse(
            notes=[NoteResponse.model_validate(n) for n in notes],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def record_download(self, db: AsyncSession, note_id: UUID) -> str:
        """
        Increment download_count and return the URL to redirect to.

        Raises:
            NotFoundError: unknown note, or a legacy note with no durable URL yet
        """
        note = await self._get(db, note_id)
        if not note.file_url:
            raise NotFoundError(resource="file for note", resource_id=str(note_id))
        note.download_count = (note.download_count or 0) + 1
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to record download for %s: %s", note_id, str(e))
            raise DatabaseError(context={"note_id": str(note_id)})
        return note.file_url

    async def delete_note(self, db: AsyncSession, object_store: ObjectStore, note_id: UUID) -> None:
        """
        Remove the remote object (best effort), then the row.

        An object recorded under a different provider (STORAGE_PROVIDER was
        switched since upload) is left alone: its id means nothing to the
        current store.
        """
        note = await self._get(db, note_id)
        if note.file_object_id and object_store.owns_url(note.file_url):
            await self._delete_remote(object_store, note.file_object_id)
        elif note.file_object_id:
            logger.warning(
                "Note %s points at %s, which %s does not serve; leaving the object in place",
                note_id,
                note.file_url,
                object_store.name,
            )
        try:
            await db.delete(note)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to delete note %s: %s", note_id, str(e))
            raise DatabaseError(context={"note_id": str(note_id)})
        logger.info("Note %s deleted", note_id)

    async def _delete_remote(self, object_store: ObjectStore, provider_object_id: str) -> None:
        try:
            found = await object_store.delete(provider_object_id)
            if not found:
                logger.info("Remote object %s was already gone", provider_object_id)
        except NoteFlowError as e:
            logger.warning("Failed to delete remote object %s: %s", provider_object_id, e.message)


note_service = NoteService()
