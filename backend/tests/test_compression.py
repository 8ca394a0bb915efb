"""
NoteFlow Backend - Compression Adapter Unit Tests
===================================================

What:  Tests for GhostscriptCompressor, ILovePdfCompressor, NullCompressor and
       CompressorFactory.
How:   Ghostscript: shutil.which and asyncio.create_subprocess_exec are
       patched; the fake process writes the output file itself.
       iLovePDF: a real httpx.AsyncClient on httpx.MockTransport.
"""

import asyncio
import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from noteflow.exceptions import (
    CompressionFailedError,
    CompressorUnavailableError,
    ConfigurationError,
)
from noteflow.services.compression import (
    CompressorFactory,
    GhostscriptCompressor,
    ILovePdfCompressor,
    NullCompressor,
)
from noteflow.services.compression.ghostscript import build_command
from noteflow.services.http_client import HttpClientHandle

GS = "noteflow.services.compression.ghostscript"


def _output_path(cmd) -> Path:
    for arg in cmd:
        if arg.startswith("-sOutputFile="):
            return Path(arg.split("=", 1)[1])
    raise AssertionError("no output argument")


def fake_gs(results):
    """
    Build a create_subprocess_exec replacement.

    `results` maps a binary path to (returncode, output_bytes or None).
    """
    invocations = []

    async def _exec(*cmd, **kwargs):
        invocations.append(list(cmd))
        returncode, output = results[cmd[0]]
        if output is not None:
            _output_path(cmd).write_bytes(output)
        proc = MagicMock()
        proc.returncode = returncode
        proc.communicate = AsyncMock(return_value=(None, b"gs error" if returncode else b""))
        proc.wait = AsyncMock(return_value=returncode)
        return proc

    _exec.invocations = invocations
    return _exec


class TestGhostscriptCommand:

    def test_command_line(self, tmp_path):
        cmd = build_command("gs", "ebook", tmp_path / "in.pdf", tmp_path / "out.pdf")
        assert cmd[0] == "gs"
        assert "-sDEVICE=pdfwrite" in cmd
        assert "-dCompatibilityLevel=1.4" in cmd
        assert "-dPDFSETTINGS=/ebook" in cmd
        assert {"-dNOPAUSE", "-dQUIET", "-dBATCH"} <= set(cmd)
        assert cmd[-1] == str(tmp_path / "in.pdf")


class TestGhostscriptCompressor:

    def setup_method(self):
        self.compressor = GhostscriptCompressor(binaries=["gs", "gswin64c"], preset="ebook", timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_unavailable_when_no_binary_on_path(self, tmp_path):
        with patch(f"{GS}.shutil.which", return_value=None):
            assert await self.compressor.is_available() is False
            with pytest.raises(CompressorUnavailableError, match="not installed"):
                await self.compressor.compress(b"%PDF", tmp_path)

    @pytest.mark.asyncio
    async def test_success_from_bytes(self, tmp_path):
        exec_ = fake_gs({"/usr/bin/gs": (0, b"small")})
        with patch(f"{GS}.shutil.which", side_effect=lambda n: "/usr/bin/gs" if n == "gs" else None), \
             patch(f"{GS}.asyncio.create_subprocess_exec", side_effect=exec_):
            outcome = await self.compressor.compress(b"%PDF" + b"x" * 100, tmp_path)

        assert outcome.result_size_bytes == 5
        assert outcome.result_path.read_bytes() == b"small"
        # Only the derivative remains; the temporary input was removed
        assert list(tmp_path.iterdir()) == [outcome.result_path]

    @pytest.mark.asyncio
    async def test_preset_passed_through(self, tmp_path):
        source = tmp_path / "in.pdf"
        source.write_bytes(b"%PDF")
        exec_ = fake_gs({"/usr/bin/gs": (0, b"ok")})
        with patch(f"{GS}.shutil.which", side_effect=lambda n: "/usr/bin/gs" if n == "gs" else None), \
             patch(f"{GS}.asyncio.create_subprocess_exec", side_effect=exec_):
            await self.compressor.compress(source, tmp_path, preset="screen")

        assert "-dPDFSETTINGS=/screen" in exec_.invocations[0]
        assert exec_.invocations[0][-1] == str(source)
        assert source.exists()

    @pytest.mark.asyncio
    async def test_falls_back_to_next_binary(self, tmp_path):
        exec_ = fake_gs({"/bin/gs": (1, b"partial"), "/bin/gswin64c": (0, b"good")})
        with patch(f"{GS}.shutil.which", side_effect=lambda n: f"/bin/{n}"), \
             patch(f"{GS}.asyncio.create_subprocess_exec", side_effect=exec_):
            outcome = await self.compressor.compress(b"%PDF", tmp_path)

        assert [inv[0] for inv in exec_.invocations] == ["/bin/gs", "/bin/gswin64c"]
        assert outcome.result_path.read_bytes() == b"good"
        # The failed attempt's partial output is gone
        assert list(tmp_path.iterdir()) == [outcome.result_path]

    @pytest.mark.asyncio
    async def test_empty_output_counts_as_failure(self, tmp_path):
        exec_ = fake_gs({"/bin/gs": (0, b""), "/bin/gswin64c": (0, None)})
        with patch(f"{GS}.shutil.which", side_effect=lambda n: f"/bin/{n}"), \
             patch(f"{GS}.asyncio.create_subprocess_exec", side_effect=exec_):
            with pytest.raises(CompressionFailedError) as exc_info:
                await self.compressor.compress(b"%PDF", tmp_path)

        assert len(exc_info.value.context["attempts"]) == 2
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_spawn_error_is_compression_failure(self, tmp_path):
        with patch(f"{GS}.shutil.which", side_effect=lambda n: "/bin/gs" if n == "gs" else None), \
             patch(f"{GS}.asyncio.create_subprocess_exec", side_effect=OSError("exec format error")):
            with pytest.raises(CompressionFailedError):
                await self.compressor.compress(b"%PDF", tmp_path)
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        compressor = GhostscriptCompressor(binaries=["gs"], timeout_seconds=0.05)
        proc = MagicMock()
        proc.returncode = None

        async def _hang():
            await asyncio.sleep(5)

        proc.communicate = AsyncMock(side_effect=_hang)
        proc.wait = AsyncMock(return_value=-9)

        with patch(f"{GS}.shutil.which", return_value="/bin/gs"), \
             patch(f"{GS}.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(CompressionFailedError, match="could not compress"):
                await compressor.compress(b"%PDF", tmp_path)

        proc.kill.assert_called_once()
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_input_write_failure_is_compression_failure(self, scratch):
        exec_ = AsyncMock()
        disk_full = OSError(28, "No space left on device")
        with patch(f"{GS}.shutil.which", return_value="/bin/gs"), \
             patch(f"{GS}.asyncio.create_subprocess_exec", exec_), \
             patch(f"{GS}.aiofiles.open", side_effect=lambda path, mode: PartialWrite(path, disk_full)):
            with pytest.raises(CompressionFailedError, match="could not stage"):
                await self.compressor.compress(b"%PDF" + b"x" * 100, scratch.scratch_dir)

        exec_.assert_not_awaited()
        assert scratch.list_artifacts() == []

    @pytest.mark.asyncio
    async def test_deadline_during_input_write_leaves_nothing(self, scratch):
        with patch(f"{GS}.shutil.which", return_value="/bin/gs"), \
             patch(f"{GS}.aiofiles.open", side_effect=lambda path, mode: PartialWrite(path)):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(self.compressor.compress(b"%PDF" + b"x" * 100, scratch.scratch_dir), 0.05)

        assert scratch.list_artifacts() == []


class PartialWrite:
    """aiofiles stand-in that leaves a truncated file, then fails or stalls."""

    def __init__(self, path, error=None):
        self.path = Path(path)
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def write(self, data):
        self.path.write_bytes(data[:2])
        if self.error is not None:
            raise self.error
        await asyncio.sleep(5)


# ══════════════════════════════════════════════════════════════════════════
# iLovePDF
# ══════════════════════════════════════════════════════════════════════════


class FakeILovePdfApi:
    """Minimal iLovePDF server behind httpx.MockTransport."""

    def __init__(self, compressed=b"%PDF-compressed", fail_start=0, process_status=200):
        self.compressed = compressed
        self.fail_start = fail_start
        self.process_status = process_status
        self.calls = []
        self.process_body = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, request.url.host, path))
        if path == "/v1/auth":
            return httpx.Response(200, json={"token": "jwt-token"})
        assert request.headers["Authorization"] == "Bearer jwt-token"
        if path == "/v1/start/compress":
            if self.fail_start > 0:
                self.fail_start -= 1
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"server": "api11.ilovepdf.com", "task": "task-1"})
        if path == "/v1/upload":
            return httpx.Response(200, json={"server_filename": "srv-file.pdf"})
        if path == "/v1/process":
            self.process_body = json.loads(request.content)
            return httpx.Response(self.process_status, json={"status": "TaskSuccess"})
        if path == "/v1/download/task-1":
            return httpx.Response(200, content=self.compressed)
        return httpx.Response(404)


def ilovepdf(api, **kwargs) -> ILovePdfCompressor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    defaults = dict(public_key="pub", secret_key="sec", max_attempts=3, min_wait=0, max_wait=0)
    defaults.update(kwargs)
    return ILovePdfCompressor(http=HttpClientHandle(client=client), **defaults)


class TestILovePdfCompressor:

    @pytest.mark.asyncio
    async def test_full_task_flow(self, tmp_path):
        api = FakeILovePdfApi()
        compressor = ilovepdf(api)

        outcome = await compressor.compress(b"%PDF" + b"x" * 500, tmp_path, preset="ebook")

        assert outcome.result_bytes == b"%PDF-compressed"
        assert outcome.result_size_bytes == len(b"%PDF-compressed")
        assert [c[2] for c in api.calls] == [
            "/v1/auth",
            "/v1/start/compress",
            "/v1/upload",
            "/v1/process",
            "/v1/download/task-1",
        ]
        assert api.calls[2][1] == "api11.ilovepdf.com"
        assert api.process_body["compression_level"] == "recommended"
        assert api.process_body["files"][0]["server_filename"] == "srv-file.pdf"

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, tmp_path):
        api = FakeILovePdfApi(fail_start=2)
        compressor = ilovepdf(api)

        outcome = await compressor.compress(b"%PDF", tmp_path)

        assert outcome.result_bytes == b"%PDF-compressed"
        assert sum(1 for c in api.calls if c[2] == "/v1/start/compress") == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, tmp_path):
        api = FakeILovePdfApi(fail_start=10)
        compressor = ilovepdf(api, max_attempts=2)

        with pytest.raises(CompressionFailedError, match="multiple attempts"):
            await compressor.compress(b"%PDF", tmp_path)

    @pytest.mark.asyncio
    async def test_client_error_fails_fast(self, tmp_path):
        api = FakeILovePdfApi(process_status=400)
        compressor = ilovepdf(api)

        with pytest.raises(CompressionFailedError, match="HTTP 400"):
            await compressor.compress(b"%PDF", tmp_path)
        assert sum(1 for c in api.calls if c[2] == "/v1/process") == 1

    @pytest.mark.asyncio
    async def test_empty_download_is_failure(self, tmp_path):
        compressor = ilovepdf(FakeILovePdfApi(compressed=b""))

        with pytest.raises(CompressionFailedError, match="empty"):
            await compressor.compress(b"%PDF", tmp_path)

    @pytest.mark.asyncio
    async def test_missing_keys_unavailable(self, tmp_path):
        compressor = ilovepdf(FakeILovePdfApi(), public_key="")

        assert await compressor.is_available() is False
        with pytest.raises(CompressorUnavailableError):
            await compressor.compress(b"%PDF", tmp_path)

    @pytest.mark.asyncio
    async def test_reads_path_source(self, tmp_path):
        source = tmp_path / "lecture.pdf"
        source.write_bytes(b"%PDF on disk")
        api = FakeILovePdfApi()

        await ilovepdf(api).compress(source, tmp_path)

        assert api.process_body["files"][0]["filename"] == "lecture.pdf"

    @pytest.mark.asyncio
    async def test_html_gateway_page_is_compression_failure(self, tmp_path):
        def gateway(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(CompressionFailedError, match="auth returned an unreadable response"):
            await ilovepdf(gateway).compress(b"%PDF", tmp_path)

    @pytest.mark.asyncio
    async def test_non_object_json_is_compression_failure(self, tmp_path):
        api = FakeILovePdfApi()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/start/compress":
                return httpx.Response(200, json=["unexpected"])
            return api(request)

        with pytest.raises(CompressionFailedError, match="start returned"):
            await ilovepdf(handler).compress(b"%PDF", tmp_path)


class TestNullCompressorAndFactory:

    @pytest.mark.asyncio
    async def test_null_compressor(self, tmp_path):
        compressor = NullCompressor()
        assert await compressor.is_available() is False
        with pytest.raises(CompressorUnavailableError):
            await compressor.compress(b"%PDF", tmp_path)

    @pytest.mark.parametrize(
        "backend,expected",
        [("ghostscript", GhostscriptCompressor), ("ilovepdf", ILovePdfCompressor), ("none", NullCompressor)],
    )
    def test_factory_builds_backend(self, backend, expected):
        settings = SimpleNamespace(
            compressor_backend=backend,
            ghostscript_binaries_list=["gs"],
            compression_preset="ebook",
            compression_timeout_seconds=10.0,
            ilovepdf_public_key="",
            ilovepdf_secret_key="",
            ilovepdf_base_url="https://api.ilovepdf.com/v1",
            retry_max_attempts=3,
            retry_min_wait=1.0,
            retry_max_wait=10.0,
        )
        assert isinstance(CompressorFactory.create(settings, HttpClientHandle()), expected)

    def test_factory_rejects_unknown_backend(self):
        settings = SimpleNamespace(compressor_backend="zip")
        with pytest.raises(ConfigurationError, match="Unknown compressor backend"):
            CompressorFactory.create(settings, HttpClientHandle())
