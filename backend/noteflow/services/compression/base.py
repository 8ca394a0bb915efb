"""
NoteFlow Backend - Abstract Compressor Interface
==================================================

What:  Contract every PDF compression backend implements.
How:   Concrete classes inherit from Compressor and implement is_available()
       and compress(). The orchestrator only ever sees this interface.
Who:   Built by CompressorFactory; called by IntakeService.

Contract:
    - compress() accepts the source as in-memory bytes OR a file path
    - The result is a NEW artifact: a path inside work_dir or fresh bytes.
      The source is never modified.
    - Failures are reported as CompressorUnavailableError (nothing to run)
      or CompressionFailedError (ran, produced nothing usable)
    - A larger-than-input result is NOT an error; the orchestrator decides
      which version to keep
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


@dataclass
class CompressionOutcome:
    """
    Result of one compression run.

    Exactly one of result_path / result_bytes is set. A result_path is a
    scratch artifact the caller now owns and must delete.
    """

    result_size_bytes: int
    was_compressed: bool = True
    result_path: Optional[Path] = None
    result_bytes: Optional[bytes] = None


class Compressor(ABC):
    """Abstract PDF compressor."""

    name: str = "abstract"

    @abstractmethod
    async def is_available(self) -> bool:
        """
        Cheap check that this backend could run right now.

        Does not compress anything. Used by the health endpoint.
        """
        ...

    @abstractmethod
    async def compress(
        self,
        source: Union[bytes, Path],
        work_dir: Path,
        preset: Optional[str] = None,
    ) -> CompressionOutcome:
        """
        Produce a compressed derivative of `source`.

        Args:
            source:    PDF content, in memory or on disk
            work_dir:  Directory for any files this call creates
            preset:    Backend-specific quality name, passed through unchanged

        Raises:
            CompressorUnavailableError: no backend binary/credentials
            CompressionFailedError:     every attempt failed
        """
        ...
