"""
NoteFlow Backend - Abstract Remote Object Store
=================================================

What:  Contract for durable, publicly addressable file storage.
How:   Concrete stores implement _upload_bytes / _upload_path, delete,
       build_access_url and owns_url. upload() is shared: it refuses to run
       unconfigured and dispatches on the source kind.
Who:   Built by ObjectStoreFactory; used by IntakeService, NoteService
       and the backfill job.

Error mapping (shared by every provider through raise_for_upload_status):

    remote answer                         raised
    ────────────────────────────────────  ─────────────────────────
    2xx                                   (success)
    2xx with a body that is not JSON      UploadRejectedError
    429, 5xx                              UploadTransientError
    other 4xx                             UploadRejectedError
    httpx.TransportError / timeout        UploadTransientError
    no credentials                        UploadUnconfiguredError

Object ids:
    Every upload mints a fresh provider object id, so re-submitting a file
    never overwrites an earlier object.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import httpx

from noteflow.exceptions import (
    UploadRejectedError,
    UploadTransientError,
    UploadUnconfiguredError,
)

logger = logging.getLogger(__name__)


@dataclass
class UploadOptions:
    """Per-upload hints. Providers ignore what they cannot use."""

    folder: str = "noteflow"
    resource_type_hint: Optional[str] = None
    desired_filename: Optional[str] = None
    media_type: Optional[str] = None


@dataclass
class StoredObject:
    """What the remote store hands back after a successful upload."""

    url: str
    provider_object_id: str
    resource_type: Optional[str] = None


def raise_for_upload_status(response: httpx.Response, provider: str) -> None:
    """Translate a provider HTTP response into the upload error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:300]
    if status == 429 or status >= 500:
        raise UploadTransientError(
            message=f"{provider} is temporarily unavailable (HTTP {status})",
            status_code=status,
            context={"provider": provider, "body": detail},
        )
    raise UploadRejectedError(
        message=f"{provider} rejected the upload (HTTP {status})",
        status_code=status,
        context={"provider": provider, "body": detail},
    )


def transport_failure(exc: httpx.HTTPError, provider: str) -> UploadTransientError:
    return UploadTransientError(
        message=f"Could not reach {provider}: {type(exc).__name__}",
        context={"provider": provider, "error": str(exc)},
    )


def json_body(response: httpx.Response, provider: str, expected: type = dict):
    """Parse a 2xx provider answer; a body of the wrong shape is a rejection."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, expected):
        raise UploadRejectedError(
            message=f"{provider} returned an unreadable response (HTTP {response.status_code})",
            status_code=response.status_code,
            context={"provider": provider, "body": response.text[:300]},
        )
    return body


class ObjectStore(ABC):
    """Abstract remote object store."""

    name: str = "abstract"

    @abstractmethod
    def is_configured(self) -> bool:
        """True when every credential this provider needs is present."""
        ...

    async def upload(self, source: Union[bytes, Path], options: UploadOptions) -> StoredObject:
        """
        Store `source` durably and return its public URL and object id.

        Path sources are streamed from disk; bytes are sent as-is.

        Raises:
            UploadUnconfiguredError: missing credentials
            UploadRejectedError:     the provider refused the content
            UploadTransientError:    network failure, throttling, 5xx
        """
        if not self.is_configured():
            raise UploadUnconfiguredError(
                message=f"{self.name} storage is not configured",
                context={"provider": self.name},
            )
        if isinstance(source, (bytes, bytearray)):
            stored = await self._upload_bytes(bytes(source), options)
        else:
            stored = await self._upload_path(Path(source), options)
        logger.info("Uploaded to %s as %s", self.name, stored.provider_object_id)
        return stored

    @abstractmethod
    async def _upload_bytes(self, content: bytes, options: UploadOptions) -> StoredObject:
        ...

    @abstractmethod
    async def _upload_path(self, path: Path, options: UploadOptions) -> StoredObject:
        ...

    @abstractmethod
    async def delete(self, provider_object_id: str) -> bool:
        """
        Remove an object. Returns False if it did not exist.

        Raises the same upload errors as upload() for transport/auth failures.
        """
        ...

    @abstractmethod
    def build_access_url(self, provider_object_id: str) -> str:
        """Public URL for an object id, without a network call."""
        ...

    @abstractmethod
    def owns_url(self, url: Optional[str]) -> bool:
        """True when `url` points into this store."""
        ...
