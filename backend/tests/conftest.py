"""
NoteFlow Backend - Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── limits:           PolicyLimits with small, readable byte sizes
    ├── scratch / disk_scratch: TransientIntakeStore in a tmp directory
    ├── fake_compressor:  Compressor double, scripted per test
    ├── fake_store:       ObjectStore double recording every upload/delete
    ├── make_intake:      Builds an IntakeService from the fixtures above
    ├── database:         Database on a throwaway SQLite file (aiosqlite)
    └── mock_db_session:  AsyncMock session for NoteService unit tests
"""

import asyncio
import os
import tempfile

# Override settings BEFORE any noteflow imports so the module-level
# `settings` singleton never points at a real database or provider.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./noteflow_test.db"
os.environ["STORAGE_PROVIDER"] = "cloudinary"
os.environ["CLOUDINARY_CLOUD_NAME"] = "test-cloud"
os.environ["CLOUDINARY_API_KEY"] = "test-key"
os.environ["CLOUDINARY_API_SECRET"] = "test-secret"
os.environ["COMPRESSOR_BACKEND"] = "none"
os.environ["SCRATCH_DIR"] = tempfile.mkdtemp(prefix="noteflow_scratch_")
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from noteflow.database import Database
from noteflow.models.note import Note
from noteflow.services.classifier import PolicyLimits
from noteflow.services.compression.base import CompressionOutcome, Compressor
from noteflow.services.intake_service import IntakeService
from noteflow.services.scratch import TransientIntakeStore
from noteflow.services.storage.base import ObjectStore, StoredObject, UploadOptions

KB = 1024
BASE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════


class FakeCompressor(Compressor):
    """
    Scripted compressor.

    result_size:  size of the derivative to produce (written as a scratch file
                  when as_file=True, returned as bytes otherwise)
    error:        raised instead of producing anything
    delay:        seconds to sleep first (for deadline tests)
    """

    name = "fake"

    def __init__(self, result_size: int = 0, as_file: bool = True, error: Optional[Exception] = None, delay: float = 0):
        self.result_size = result_size
        self.as_file = as_file
        self.error = error
        self.delay = delay
        self.calls: List[Union[bytes, Path]] = []
        self.produced: List[Path] = []

    async def is_available(self) -> bool:
        return self.error is None

    async def compress(self, source, work_dir, preset=None) -> CompressionOutcome:
        self.calls.append(source)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        data = b"c" * self.result_size
        if not self.as_file:
            return CompressionOutcome(result_bytes=data, result_size_bytes=len(data))
        out = Path(work_dir) / f"derivative-{len(self.calls)}.pdf"
        out.write_bytes(data)
        self.produced.append(out)
        return CompressionOutcome(result_path=out, result_size_bytes=len(data))


class FakeObjectStore(ObjectStore):
    """In-memory object store recording what it was asked to store."""

    name = "fake"

    def __init__(self, configured: bool = True, error: Optional[Exception] = None, url_base: str = "https://cdn.test"):
        self.configured = configured
        self.error = error
        self.url_base = url_base
        self.uploads: List[dict] = []
        self.deleted: List[str] = []
        self.delete_error: Optional[Exception] = None

    def is_configured(self) -> bool:
        return self.configured

    async def _upload_bytes(self, content: bytes, options: UploadOptions) -> StoredObject:
        return self._record(content, options, "bytes")

    async def _upload_path(self, path: Path, options: UploadOptions) -> StoredObject:
        return self._record(path.read_bytes(), options, "path")

    def _record(self, content: bytes, options: UploadOptions, via: str) -> StoredObject:
        if self.error is not None:
            raise self.error
        object_id = f"obj-{len(self.uploads) + 1}"
        self.uploads.append({"size": len(content), "options": options, "via": via, "id": object_id})
        return StoredObject(url=self.build_access_url(object_id), provider_object_id=object_id)

    async def delete(self, provider_object_id: str) -> bool:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(provider_object_id)
        return True

    def build_access_url(self, provider_object_id: str) -> str:
        return f"{self.url_base}/{provider_object_id}"

    def owns_url(self, url) -> bool:
        return bool(url) and url.startswith(self.url_base)


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def limits():
    """Hard limit 100KB, compression threshold 100KB, intake ceiling 500KB."""
    return PolicyLimits(
        hard_limit_bytes=100 * KB,
        compression_threshold_bytes=100 * KB,
        max_intake_bytes=500 * KB,
    )


@pytest.fixture
def scratch(tmp_path):
    return TransientIntakeStore(tmp_path / "scratch", backing="memory")


@pytest.fixture
def disk_scratch(tmp_path):
    return TransientIntakeStore(tmp_path / "scratch-disk", backing="disk")


@pytest.fixture
def fake_compressor():
    return FakeCompressor(result_size=40 * KB)


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def make_intake(scratch, fake_compressor, fake_store, limits):
    """
    Factory for IntakeService; any component can be swapped per test.

    Usage:
        intake = make_intake(compressor=FakeCompressor(error=...))
    """

    def _make(**overrides):
        kwargs = dict(
            scratch=scratch,
            compressor=fake_compressor,
            object_store=fake_store,
            limits=limits,
            folder="tests",
            compression_timeout=5.0,
            upload_timeout=5.0,
        )
        kwargs.update(overrides)
        return IntakeService(**kwargs)

    return _make


@pytest_asyncio.fixture
async def database(tmp_path):
    """A fresh SQLite database with every table created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def mock_db_session():
    """
    Mock async database session.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = note
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.refresh = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def pdf_bytes():
    """Returns a function producing a fake PDF body of the requested size."""

    def _make(size: int) -> bytes:
        header = b"%PDF-1.4\n"
        return header + b"x" * max(0, size - len(header))

    return _make


async def add_note(database, minutes=0, **overrides):
    """Insert one note row, `minutes` after BASE_TIME; returns its id."""
    fields = dict(
        title="Graph Theory",
        subject="Discrete Math",
        semester="3",
        description="",
        file_path=None,
        file_url="",
        original_name="graphs.pdf",
        mime_type="application/pdf",
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    fields.update(overrides)
    async with database.session_factory() as session:
        note = Note(**fields)
        session.add(note)
        await session.commit()
        return note.id
