"""
NoteFlow Backend - Pydantic Request/Response Schemas
======================================================

What:  Pydantic models defining the API contract and the intake pipeline's
       hand-off value (StoredFileReference).
How:   FastAPI validates request metadata against NoteMetadata and serializes
       responses through NoteResponse; IntakeService returns a
       StoredFileReference that routes and the backfill job persist.

Validation limits on note metadata:
    title        2-120 chars
    subject      2-60 chars
    semester     1-2 chars
    description  0-500 chars
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Intake Pipeline Output
# ══════════════════════════════════════════════════════════════════════════


class StoredFileReference(BaseModel):
    """
    Durable, fetchable reference produced by a successful intake operation.

    `url` is never empty. `size_at_rest` is the size of the bytes that were
    actually uploaded (after compression when it helped).
    """

    url: str = Field(min_length=1, description="Public URL of the stored object")
    provider_object_id: str = Field(description="Provider-specific object identifier")
    media_type_at_rest: str = Field(description="Media type of the stored bytes")
    size_at_rest: int = Field(ge=0, description="Size of the stored bytes")
    original_name: str = Field(description="Sanitized client filename")
    was_compressed: bool = Field(default=False, description="True when a compressed derivative was stored")


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class NoteMetadata(BaseModel):
    """Form fields accompanying a note upload."""

    title: str = Field(min_length=2, max_length=120)
    subject: str = Field(min_length=2, max_length=60)
    semester: str = Field(min_length=1, max_length=2)
    description: str = Field(default="", max_length=500)

    @field_validator("title", "subject", "semester", mode="before")
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip() if isinstance(v, str) else v


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NoteResponse(BaseModel):
    """
    What:  Full representation of a stored note.
    Who:   Returned by POST /api/notes (201) and GET /api/notes/{id}.
    """

    id: uuid.UUID
    title: str
    subject: str
    semester: str
    description: str
    file_url: str = Field(description="Durable public URL (empty only for unmigrated legacy notes)")
    original_name: str
    mime_type: str
    size_bytes: Optional[int] = None
    download_count: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("file_url", "description", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return "" if v is None else v


class NoteListResponse(BaseModel):
    """
    What:  One page of notes, newest first.
    How:   next_cursor is the created_at of the last note on this page;
           the client sends it back as ?cursor= for the next page.
    """

    notes: List[NoteResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: uuid.UUID


class ErrorResponse(BaseModel):
    """
    What:  Standardized error body for every API error.

    Example:
        {
            "error": "still_too_large",
            "message": "Compressed PDF is 12.4MB, above the 10.0MB limit",
            "details": {"kind": "still_too_large"},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected | disconnected")
    object_store: str = Field(description="Provider name and whether it is configured")
    compressor: str = Field(description="Compressor backend name and availability")
    uptime_seconds: float
