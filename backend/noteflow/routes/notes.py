"""
NoteFlow Backend - Notes Route Handlers
=========================================

What:  HTTP surface for notes. Uploading goes through the intake pipeline
       before any row is written.
How:   Extracts multipart/form fields, delegates to NoteService, returns JSON
       or a redirect.

Upload error statuses (mapped in main.py):
    empty_file                  400
    too_large / still_too_large 413
    compression_unavailable     422
    upload_error                502 rejected, 503 transient (Retry-After)
"""

import logging
from typing import Optional
from uuid import UUID

import pydantic
from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from noteflow.dependencies import get_db_session, get_intake_service, get_object_store
from noteflow.exceptions import ValidationError
from noteflow.schemas.note import (
    DeleteResponse,
    ErrorResponse,
    NoteListResponse,
    NoteMetadata,
    NoteResponse,
)
from noteflow.services.intake_service import IntakeService
from noteflow.services.note_service import note_service
from noteflow.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notes"])


def _metadata_from_form(title: str, subject: str, semester: str, description: Optional[str]) -> NoteMetadata:
    try:
        return NoteMetadata(title=title, subject=subject, semester=semester, description=description or "")
    except pydantic.ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        first_field = str(e.errors()[0]["loc"][0]) if e.errors() else None
        raise ValidationError(
            message="; ".join(problems),
            field=first_field,
        )


@router.post(
    "/notes",
    status_code=201,
    response_model=NoteResponse,
    responses={
        400: {"description": "Invalid metadata or empty file", "model": ErrorResponse},
        413: {"description": "File too large, even after compression", "model": ErrorResponse},
        422: {"description": "File needs compression but none is available", "model": ErrorResponse},
        502: {"description": "Remote storage rejected the file", "model": ErrorResponse},
        503: {"description": "Remote storage temporarily unavailable", "model": ErrorResponse},
    },
    summary="Upload a note",
)
async def create_note(
    file: UploadFile = File(..., description="The note file (PDF, image, document)"),
    title: str = Form(...),
    subject: str = Form(...),
    semester: str = Form(...),
    description: Optional[str] = Form(default=""),
    db: AsyncSession = Depends(get_db_session),
    intake: IntakeService = Depends(get_intake_service),
    object_store: ObjectStore = Depends(get_object_store),
) -> NoteResponse:
    """
    Store the file durably, then create the note.

    Oversized PDFs are compressed first. No row is written unless the file
    reached remote storage. The file is streamed into scratch and refused
    as soon as its size is known to be over the limit.
    """
    metadata = _metadata_from_form(title, subject, semester, description)
    try:
        return await note_service.create_note(
            db=db,
            intake=intake,
            object_store=object_store,
            metadata=metadata,
            upload=file,
            filename=file.filename,
            media_type=file.content_type,
            size_hint=file.size,
        )
    finally:
        await file.close()


@router.get("/notes", response_model=NoteListResponse, summary="List notes, newest first")
async def list_notes(
    limit: int = Query(default=6, ge=1, le=24),
    cursor: Optional[str] = Query(default=None, description="next_cursor from the previous page"),
    subject: Optional[str] = Query(default=None, max_length=60),
    semester: Optional[str] = Query(default=None, max_length=2),
    q: Optional[str] = Query(default=None, max_length=100, description="Search title, subject and semester"),
    db: AsyncSession = Depends(get_db_session),
) -> NoteListResponse:
    return await note_service.list_notes(
        db=db, limit=limit, cursor=cursor, subject=subject, semester=semester, q=q
    )


@router.get(
    "/notes/{note_id}",
    response_model=NoteResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Get a single note",
)
async def get_note(note_id: UUID, db: AsyncSession = Depends(get_db_session)) -> NoteResponse:
    return await note_service.get_note(db=db, note_id=note_id)


@router.get(
    "/notes/{note_id}/download",
    status_code=302,
    responses={404: {"description": "Note or file not found", "model": ErrorResponse}},
    summary="Download a note's file",
)
async def download_note(note_id: UUID, db: AsyncSession = Depends(get_db_session)) -> Response:
    """Count the download and redirect to the durable URL."""
    url = await note_service.record_download(db=db, note_id=note_id)
    return RedirectResponse(url=url, status_code=302)


@router.delete(
    "/notes/{note_id}",
    response_model=DeleteResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Delete a note and its stored file",
)
async def delete_note(
    note_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    object_store: ObjectStore = Depends(get_object_store),
) -> DeleteResponse:
    await note_service.delete_note(db=db, object_store=object_store, note_id=note_id)
    return DeleteResponse(deleted=True, id=note_id)
