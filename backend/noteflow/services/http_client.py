"""
NoteFlow Backend - Shared HTTP Client
=======================================

What:  One lazily created httpx.AsyncClient shared by every remote adapter
       (object stores, hosted compression).
How:   HttpClientHandle.get() creates the client on first use; aclose() is
       called from the app lifespan / CLI shutdown. Tests pass a client
       built on httpx.MockTransport instead.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class HttpClientHandle:
    """Owns the process-wide httpx.AsyncClient."""

    def __init__(self, timeout_seconds: float = 60.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout_seconds = timeout_seconds
        self._client = client

    def get(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                follow_redirects=True,
            )
            logger.debug("Created shared httpx client (timeout=%ss)", self.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            logger.info("Shared HTTP client closed")
        self._client = None
