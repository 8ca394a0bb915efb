"""
NoteFlow Backend - Note SQLAlchemy Model
==========================================

What:  ORM model for the `notes` table.
How:   Inherits from the shared DeclarativeBase; Alembic reads this metadata.
Who:   NoteService (CRUD), NoteRecordStore (backfill scan and update).

File columns:
    file_path       Legacy reference to a local file, relative to UPLOADS_ROOT.
                    Only rows created before remote storage have it.
    file_url        Durable public URL. '' (or NULL on very old rows) until
                    a successful intake or backfill fills it in.
    file_object_id  Provider object id, used to delete the remote object.

Index on created_at:
    Serves both the recent-notes listing and the backfill's
    (created_at, id) keyset scan.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from noteflow.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """
    A shared study note and the file behind it.

    Lifecycle:
        1. Upload: intake succeeds first, then the row is created with file_url set
        2. Download: download_count incremented, client redirected to file_url
        3. Legacy rows: file_url empty, file_path set; the backfill job fills file_url
        4. Delete: remote object removed (best effort), then the row
    """

    __tablename__ = "notes"

    # Uuid maps to the native UUID type on PostgreSQL and CHAR(32) on SQLite
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Metadata ──────────────────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    subject: Mapped[str] = mapped_column(String(60), nullable=False)
    semester: Mapped[str] = mapped_column(String(2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))

    # ── File Reference ────────────────────────────────────────────────────
    file_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, default="", server_default=text("''")
    )
    file_object_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (Index("idx_notes_created_at", "created_at", "id"),)

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, title='{self.title}', file_url='{self.file_url}')>"
