"""
NoteFlow Backend - Transient Intake Store Unit Tests
======================================================

What:  Tests for filename sanitization, scratch naming and artifact release.
How:   Real files in pytest's tmp_path; no mocks except for the OSError path.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from noteflow.exceptions import FileStorageError
from noteflow.services.compression.base import CompressionOutcome
from noteflow.services.scratch import (
    MAX_NAME_LENGTH,
    TransientIntakeStore,
    UploadCandidate,
    read_chunks,
    sanitize_filename,
    scratch_name,
)


class TestSanitizeFilename:

    def test_strips_directories(self):
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("C:\\Users\\me\\notes.pdf") == "notes.pdf"

    def test_replaces_unsafe_characters(self):
        assert sanitize_filename("Week 3: Graphs.PDF") == "Week-3-Graphs.PDF"

    def test_no_hidden_files(self):
        assert sanitize_filename(".bashrc") == "bashrc"

    def test_empty_falls_back_to_default(self):
        assert sanitize_filename(None) == "upload"
        assert sanitize_filename("") == "upload"
        assert sanitize_filename("///") == "upload"

    def test_long_name_keeps_extension(self):
        result = sanitize_filename("a" * 500 + ".pdf")
        assert len(result) <= MAX_NAME_LENGTH
        assert result.endswith(".pdf")


class TestScratchName:

    def test_names_are_unique(self):
        names = {scratch_name(suffix=".pdf", label="x") for _ in range(200)}
        assert len(names) == 200

    def test_label_and_suffix_included(self):
        name = scratch_name(suffix=".pdf", label="gs-out")
        assert name.endswith("_gs-out.pdf")


class TestReceive:

    @pytest.mark.asyncio
    async def test_memory_backing_keeps_bytes_resident(self, scratch):
        candidate = await scratch.receive(b"hello", "notes.pdf", "application/pdf")
        assert candidate.resident is True
        assert candidate.size_bytes == 5
        assert candidate.artifacts == []
        assert scratch.list_artifacts() == []

    @pytest.mark.asyncio
    async def test_disk_backing_writes_owned_file(self, disk_scratch):
        candidate = await disk_scratch.receive(b"hello", "notes.pdf", "application/pdf")
        assert candidate.resident is False
        assert candidate.source_path.read_bytes() == b"hello"
        assert candidate.source_path.name.endswith("_notes.pdf")
        assert candidate.artifacts == [candidate.source_path]

    @pytest.mark.asyncio
    async def test_size_measured_from_content(self, scratch):
        candidate = await scratch.receive(b"x" * 1234, "a.pdf", "application/pdf")
        assert candidate.size_bytes == 1234

    @pytest.mark.asyncio
    async def test_disk_write_failure_raises_file_storage_error(self, disk_scratch):
        with patch("noteflow.services.scratch.aiofiles.open", side_effect=OSError("disk full")):
            with pytest.raises(FileStorageError, match="stage the uploaded file"):
                await disk_scratch.receive(b"hello", "notes.pdf", "application/pdf")
        assert disk_scratch.list_artifacts() == []

    @pytest.mark.asyncio
    async def test_concurrent_receives_do_not_collide(self, disk_scratch):
        first = await disk_scratch.receive(b"one", "same.pdf", "application/pdf")
        second = await disk_scratch.receive(b"two", "same.pdf", "application/pdf")
        assert first.source_path != second.source_path
        assert first.source_path.read_bytes() == b"one"
        assert second.source_path.read_bytes() == b"two"


async def chunks_of(*parts, fail_after=None):
    for i, part in enumerate(parts):
        if fail_after is not None and i == fail_after:
            raise asyncio.CancelledError()
        yield part


class TestReceiveStream:

    @pytest.mark.asyncio
    async def test_memory_backing_joins_chunks(self, scratch):
        candidate = await scratch.receive_stream(chunks_of(b"%PDF", b"-1.4", b"\n"), "a.pdf", "application/pdf")
        assert candidate.source == b"%PDF-1.4\n"
        assert candidate.size_bytes == 9

    @pytest.mark.asyncio
    async def test_disk_backing_writes_chunks(self, disk_scratch):
        candidate = await disk_scratch.receive_stream(chunks_of(b"one", b"two"), "a.pdf", "application/pdf")
        assert candidate.source_path.read_bytes() == b"onetwo"
        assert candidate.size_bytes == 6
        assert candidate.artifacts == [candidate.source_path]

    @pytest.mark.asyncio
    async def test_cancelled_stream_removes_partial_file(self, disk_scratch):
        with pytest.raises(asyncio.CancelledError):
            await disk_scratch.receive_stream(chunks_of(b"one", b"two", fail_after=1), "a.pdf", "application/pdf")
        assert disk_scratch.list_artifacts() == []

    @pytest.mark.asyncio
    async def test_disk_write_failure_raises_file_storage_error(self, disk_scratch):
        with patch("noteflow.services.scratch.aiofiles.open", side_effect=OSError("disk full")):
            with pytest.raises(FileStorageError):
                await disk_scratch.receive_stream(chunks_of(b"one"), "a.pdf", "application/pdf")
        assert disk_scratch.list_artifacts() == []

    @pytest.mark.asyncio
    async def test_read_chunks_stops_at_eof(self):
        reader = AsyncMock()
        reader.read = AsyncMock(side_effect=[b"ab", b"c", b""])
        assert [c async for c in read_chunks(reader, chunk_size=2)] == [b"ab", b"c"]
        reader.read.assert_awaited_with(2)


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_removes_owned_files(self, disk_scratch):
        candidate = await disk_scratch.receive(b"hello", "notes.pdf", "application/pdf")
        derivative = disk_scratch.allocate(suffix=".pdf", label="derived")
        derivative.write_bytes(b"small")
        candidate.own(derivative)

        disk_scratch.release(candidate)

        assert disk_scratch.list_artifacts() == []
        assert candidate.artifacts == []

    def test_release_tolerates_missing_files(self, scratch):
        candidate = UploadCandidate("a.pdf", "application/pdf", 1, source_bytes=b"x")
        candidate.own(scratch.scratch_dir / "never-created.pdf")
        scratch.release(candidate)

    def test_adopted_file_is_not_deleted(self, scratch, tmp_path: Path):
        legacy = tmp_path / "legacy.pdf"
        legacy.write_bytes(b"%PDF legacy")

        candidate = scratch.adopt(legacy, "Legacy Notes.pdf", "application/pdf")
        scratch.release(candidate)

        assert legacy.exists()
        assert candidate.original_name == "Legacy-Notes.pdf"
        assert candidate.size_bytes == len(b"%PDF legacy")


class TestUploadCandidate:

    def test_requires_exactly_one_source(self):
        with pytest.raises(ValueError):
            UploadCandidate("a", "b", 0)
        with pytest.raises(ValueError):
            UploadCandidate("a", "b", 0, source_bytes=b"x", source_path=Path("/tmp/x"))

    def test_replace_with_path_outcome_remeasures_and_owns(self, tmp_path):
        out = tmp_path / "out.pdf"
        out.write_bytes(b"abc")
        candidate = UploadCandidate("a.pdf", "application/pdf", 10, source_bytes=b"x" * 10)

        candidate.replace_with(CompressionOutcome(result_size_bytes=3, result_path=out))

        assert candidate.size_bytes == 3
        assert candidate.source == out
        assert out in candidate.artifacts
        assert candidate.was_compressed is True

    def test_replace_with_bytes_outcome(self, tmp_path):
        src = tmp_path / "src.pdf"
        src.write_bytes(b"x" * 10)
        candidate = UploadCandidate("a.pdf", "application/pdf", 10, source_path=src)

        candidate.replace_with(CompressionOutcome(result_size_bytes=2, result_bytes=b"yy"))

        assert candidate.resident is True
        assert candidate.source == b"yy"
        assert candidate.size_bytes == 2

    def test_unknown_backing_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown intake backing"):
            TransientIntakeStore(tmp_path, backing="tape")
