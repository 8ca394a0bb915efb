"""
NoteFlow Backend - Compression Adapters
=========================================

What:  Interchangeable PDF compressors behind the Compressor interface.
How:   CompressorFactory picks one by name (COMPRESSOR_BACKEND).

    ghostscript → GhostscriptCompressor   (local binary, subprocess)
    ilovepdf    → ILovePdfCompressor      (hosted REST API over httpx)
    none        → NullCompressor          (always unavailable)
"""

from noteflow.services.compression.base import CompressionOutcome, Compressor
from noteflow.services.compression.factory import CompressorFactory
from noteflow.services.compression.ghostscript import GhostscriptCompressor
from noteflow.services.compression.ilovepdf import ILovePdfCompressor
from noteflow.services.compression.noop import NullCompressor

__all__ = [
    "CompressionOutcome",
    "Compressor",
    "CompressorFactory",
    "GhostscriptCompressor",
    "ILovePdfCompressor",
    "NullCompressor",
]
