"""
NoteFlow Backend - Ghostscript Compressor
===========================================

What:  Rewrites a PDF through Ghostscript's pdfwrite device with a
       downsampling preset (screen, ebook, printer, prepress).
How:   Tries each configured binary name in order (gs, gswin64c, gswin32c)
       via asyncio subprocesses. The first run that exits 0 and leaves a
       non-empty output file wins. Partial outputs of failed attempts are
       removed before the next candidate runs.
Who:   Selected by CompressorFactory when COMPRESSOR_BACKEND=ghostscript.

Command line:
    <gs> -sDEVICE=pdfwrite -dCompatibilityLevel=1.4 -dPDFSETTINGS=/<preset>
         -dNOPAUSE -dQUIET -dBATCH -sOutputFile=<out> <in>
"""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

import aiofiles

from noteflow.exceptions import CompressionFailedError, CompressorUnavailableError
from noteflow.services.compression.base import CompressionOutcome, Compressor
from noteflow.services.scratch import scratch_name

logger = logging.getLogger(__name__)

DEFAULT_BINARIES = ("gs", "gswin64c", "gswin32c")


def build_command(binary: str, preset: str, input_path: Path, output_path: Path) -> List[str]:
    return [
        binary,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS=/{preset}",
        "-dNOPAUSE",
        "-dQUIET",
        "-dBATCH",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


class GhostscriptCompressor(Compressor):
    """Local Ghostscript binary driven through asyncio subprocesses."""

    name = "ghostscript"

    def __init__(
        self,
        binaries: Sequence[str] = DEFAULT_BINARIES,
        preset: str = "ebook",
        timeout_seconds: float = 120.0,
    ):
        self.binaries = list(binaries)
        self.preset = preset
        self.timeout_seconds = timeout_seconds

    def resolve_binaries(self) -> List[str]:
        """Configured binary names that exist on PATH, in configured order."""
        resolved = []
        for name in self.binaries:
            found = shutil.which(name)
            if found:
                resolved.append(found)
        return resolved

    async def is_available(self) -> bool:
        return bool(self.resolve_binaries())

    async def compress(
        self,
        source: Union[bytes, Path],
        work_dir: Path,
        preset: Optional[str] = None,
    ) -> CompressionOutcome:
        candidates = self.resolve_binaries()
        if not candidates:
            raise CompressorUnavailableError(
                message="Ghostscript is not installed",
                context={"searched": self.binaries},
            )

        preset = preset or self.preset
        work_dir = Path(work_dir)
        temp_input: Optional[Path] = None

        errors = []
        try:
            if isinstance(source, (bytes, bytearray)):
                temp_input = work_dir / scratch_name(suffix=".pdf", label="gs-in")
                await _write_input(temp_input, source)
                input_path = temp_input
            else:
                input_path = Path(source)

            for binary in candidates:
                output_path = work_dir / scratch_name(suffix=".pdf", label="gs-out")
                start_time = time.time()
                try:
                    await self._run(binary, preset, input_path, output_path)
                except CompressionFailedError as e:
                    errors.append(f"{Path(binary).name}: {e.message}")
                    _discard(output_path)
                    continue
                except BaseException:
                    # Cancelled by the caller's deadline: leave nothing behind
                    _discard(output_path)
                    raise

                size = output_path.stat().st_size if output_path.exists() else 0
                if size == 0:
                    errors.append(f"{Path(binary).name}: empty output")
                    _discard(output_path)
                    continue

                logger.info(
                    "Ghostscript (%s, /%s) produced %d bytes in %.0fms",
                    Path(binary).name,
                    preset,
                    size,
                    (time.time() - start_time) * 1000,
                )
                return CompressionOutcome(result_path=output_path, result_size_bytes=size)
        finally:
            if temp_input is not None:
                _discard(temp_input)

        logger.warning("All Ghostscript candidates failed: %s", "; ".join(errors))
        raise CompressionFailedError(
            message="Ghostscript could not compress the PDF",
            context={"attempts": errors},
        )

    async def _run(self, binary: str, preset: str, input_path: Path, output_path: Path) -> None:
        cmd = build_command(binary, preset, input_path, output_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CompressionFailedError(message=f"could not start: {e}")

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            _kill(proc)
            await proc.wait()
            raise CompressionFailedError(message=f"timed out after {self.timeout_seconds}s")
        except asyncio.CancelledError:
            _kill(proc)
            raise

        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()[:300]
            raise CompressionFailedError(message=f"exit code {proc.returncode}: {detail}")


def _kill(proc) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def _discard(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove Ghostscript artifact %s: %s", path, str(e))


async def _write_input(path: Path, content: bytes) -> None:
    try:
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)
    except OSError as e:
        raise CompressionFailedError(message=f"could not stage the input PDF: {e}")
