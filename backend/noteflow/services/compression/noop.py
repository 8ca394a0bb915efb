"""Compressor used when COMPRESSOR_BACKEND=none: every request reports unavailable."""

from pathlib import Path
from typing import Optional, Union

from noteflow.exceptions import CompressorUnavailableError
from noteflow.services.compression.base import CompressionOutcome, Compressor


class NullCompressor(Compressor):
    name = "none"

    async def is_available(self) -> bool:
        return False

    async def compress(
        self,
        source: Union[bytes, Path],
        work_dir: Path,
        preset: Optional[str] = None,
    ) -> CompressionOutcome:
        raise CompressorUnavailableError(
            message="PDF compression is disabled",
            context={"backend": self.name},
        )
