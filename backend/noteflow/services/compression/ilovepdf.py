"""
NoteFlow Backend - iLovePDF Compressor
========================================

What:  Compresses PDFs through the hosted iLovePDF REST API.
How:   The five-step task flow, each call over the shared httpx client:

        1. POST {base}/auth            {public_key}        → token
        2. GET  {base}/start/compress                      → server, task
        3. POST https://{server}/v1/upload   (multipart)   → server_filename
        4. POST https://{server}/v1/process  {task, tool, compression_level, files}
        5. GET  https://{server}/v1/download/{task}        → compressed bytes

       Network errors, 429 and 5xx responses are retried with tenacity
       (exponential backoff + jitter). Anything else fails fast.
Who:   Selected by CompressorFactory when COMPRESSOR_BACKEND=ilovepdf.

Presets:
    low, recommended, extreme. Ghostscript names are mapped onto these so
    switching backends does not require changing COMPRESSION_PRESET.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Union

import aiofiles
import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from noteflow.exceptions import CompressionFailedError, CompressorUnavailableError
from noteflow.services.compression.base import CompressionOutcome, Compressor
from noteflow.services.http_client import HttpClientHandle

logger = logging.getLogger(__name__)

PRESET_MAP = {
    "screen": "extreme",
    "ebook": "recommended",
    "printer": "low",
    "prepress": "low",
    "low": "low",
    "recommended": "recommended",
    "extreme": "extreme",
}


class _TransientApiError(Exception):
    """Retryable iLovePDF failure (network, 429, 5xx)."""


class ILovePdfCompressor(Compressor):
    """Hosted compression through iLovePDF."""

    name = "ilovepdf"

    def __init__(
        self,
        http: HttpClientHandle,
        public_key: str,
        secret_key: str,
        base_url: str = "https://api.ilovepdf.com/v1",
        preset: str = "recommended",
        max_attempts: int = 3,
        min_wait: float = 1.0,
        max_wait: float = 10.0,
    ):
        self.http = http
        self.public_key = public_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.preset = preset
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    def is_configured(self) -> bool:
        return bool(self.public_key and self.secret_key)

    async def is_available(self) -> bool:
        return self.is_configured()

    async def compress(
        self,
        source: Union[bytes, Path],
        work_dir: Path,
        preset: Optional[str] = None,
    ) -> CompressionOutcome:
        if not self.is_configured():
            raise CompressorUnavailableError(
                message="iLovePDF API keys are not configured",
                context={"backend": self.name},
            )

        level = PRESET_MAP.get((preset or self.preset).lower(), "recommended")
        if isinstance(source, (bytes, bytearray)):
            content = bytes(source)
            filename = "document.pdf"
        else:
            try:
                async with aiofiles.open(source, "rb") as f:
                    content = await f.read()
            except OSError as e:
                raise CompressionFailedError(message=f"could not read the input PDF: {e}")
            filename = Path(source).name

        start_time = time.time()
        try:
            result = await self._with_retry(self._run_task, content, filename, level)
        except _TransientApiError as e:
            raise CompressionFailedError(
                message="iLovePDF did not respond after multiple attempts",
                context={"error": str(e), "attempts": self.max_attempts},
            )

        if not result:
            raise CompressionFailedError(message="iLovePDF returned an empty file")

        logger.info(
            "[iLovePDF] %s: %d → %d bytes in %.0fms",
            level,
            len(content),
            len(result),
            (time.time() - start_time) * 1000,
        )
        return CompressionOutcome(result_bytes=result, result_size_bytes=len(result))

    async def _with_retry(self, fn, *args):
        retrying = retry(
            retry=retry_if_exception_type(_TransientApiError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=self.min_wait, max=self.max_wait, jitter=1),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(fn)(*args)

    async def _run_task(self, content: bytes, filename: str, level: str) -> bytes:
        client = self.http.get()

        auth = await self._request(client, "POST", f"{self.base_url}/auth", json={"public_key": self.public_key})
        token = _json(auth, "auth").get("token")
        if not token:
            raise CompressionFailedError(message="iLovePDF authentication returned no token")
        headers = {"Authorization": f"Bearer {token}"}

        start = await self._request(client, "GET", f"{self.base_url}/start/compress", headers=headers)
        start_body = _json(start, "start")
        server, task = start_body.get("server"), start_body.get("task")
        if not server or not task:
            raise CompressionFailedError(message="iLovePDF did not start a task", context=start_body)
        server_base = f"https://{server}/v1"

        upload = await self._request(
            client,
            "POST",
            f"{server_base}/upload",
            headers=headers,
            data={"task": task},
            files={"file": (filename, content, "application/pdf")},
        )
        server_filename = _json(upload, "upload").get("server_filename")
        if not server_filename:
            raise CompressionFailedError(message="iLovePDF upload returned no server_filename")

        await self._request(
            client,
            "POST",
            f"{server_base}/process",
            headers=headers,
            json={
                "task": task,
                "tool": "compress",
                "compression_level": level,
                "files": [{"server_filename": server_filename, "filename": filename}],
            },
        )

        download = await self._request(client, "GET", f"{server_base}/download/{task}", headers=headers)
        return download.content

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise _TransientApiError(f"{method} {url}: {type(e).__name__}: {e}")

        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientApiError(f"{method} {url}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise CompressionFailedError(
                message=f"iLovePDF rejected the request (HTTP {response.status_code})",
                context={"url": url, "body": response.text[:300]},
            )
        return response


def _json(response: httpx.Response, step: str) -> dict:
    """Body of a 2xx iLovePDF answer; anything but a JSON object fails the task."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise CompressionFailedError(
            message=f"iLovePDF {step} returned an unreadable response",
            context={"step": step, "body": response.text[:300]},
        )
    return body
