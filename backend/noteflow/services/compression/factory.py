"""
NoteFlow Backend - Compressor Factory
=======================================

What:  Turns COMPRESSOR_BACKEND into a concrete Compressor.
How:   A name → builder registry. Unknown names raise ConfigurationError.
"""

import logging
from typing import Callable, Dict

from noteflow.exceptions import ConfigurationError
from noteflow.services.compression.base import Compressor
from noteflow.services.compression.ghostscript import GhostscriptCompressor
from noteflow.services.compression.ilovepdf import ILovePdfCompressor
from noteflow.services.compression.noop import NullCompressor
from noteflow.services.http_client import HttpClientHandle

logger = logging.getLogger(__name__)


def _ghostscript(settings, http: HttpClientHandle) -> Compressor:
    return GhostscriptCompressor(
        binaries=settings.ghostscript_binaries_list,
        preset=settings.compression_preset,
        timeout_seconds=settings.compression_timeout_seconds,
    )


def _ilovepdf(settings, http: HttpClientHandle) -> Compressor:
    return ILovePdfCompressor(
        http=http,
        public_key=settings.ilovepdf_public_key,
        secret_key=settings.ilovepdf_secret_key,
        base_url=settings.ilovepdf_base_url,
        preset=settings.compression_preset,
        max_attempts=settings.retry_max_attempts,
        min_wait=settings.retry_min_wait,
        max_wait=settings.retry_max_wait,
    )


def _none(settings, http: HttpClientHandle) -> Compressor:
    return NullCompressor()


class CompressorFactory:
    BACKENDS: Dict[str, Callable[..., Compressor]] = {
        "ghostscript": _ghostscript,
        "ilovepdf": _ilovepdf,
        "none": _none,
    }

    @classmethod
    def create(cls, settings, http: HttpClientHandle) -> Compressor:
        builder = cls.BACKENDS.get(settings.compressor_backend)
        if builder is None:
            raise ConfigurationError(
                message=f"Unknown compressor backend '{settings.compressor_backend}'",
                context={"supported": sorted(cls.BACKENDS)},
            )
        compressor = builder(settings, http)
        logger.info("Compressor selected: %s", compressor.name)
        return compressor
