"""
NoteFlow Backend - Supabase Storage Object Store
==================================================

What:  Stores note files in a public Supabase Storage bucket.
How:   Storage REST API over the shared httpx client, authenticated with the
       service-role key (Bearer + apikey headers). Path sources are streamed
       from disk in chunks with aiofiles; bytes are sent as one body.

Object keys:
    <folder>/<UTC timestamp>_<random hex>.<ext>
    Minted per upload, never reused (x-upsert is off).

Endpoints:
    POST   {url}/storage/v1/object/{bucket}/{key}           upload
    DELETE {url}/storage/v1/object/{bucket}  {prefixes:[]}  delete
    GET    {url}/storage/v1/object/public/{bucket}/{key}    public access
"""

import logging
import mimetypes
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import httpx

from noteflow.services.http_client import HttpClientHandle
from noteflow.services.storage.base import (
    ObjectStore,
    StoredObject,
    UploadOptions,
    json_body,
    raise_for_upload_status,
    transport_failure,
)

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 256 * 1024


def _extension(options: UploadOptions, fallback: Optional[str] = None) -> str:
    for name in (options.desired_filename, fallback):
        if name and "." in name:
            return name.rsplit(".", 1)[-1].lower()[:10]
    if options.media_type:
        guessed = mimetypes.guess_extension(options.media_type.split(";")[0].strip())
        if guessed:
            return guessed.lstrip(".")
    return "bin"


class SupabaseObjectStore(ObjectStore):
    name = "supabase"

    def __init__(self, http: HttpClientHandle, url: str, service_role_key: str, bucket: str = "notes"):
        self.http = http
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self.bucket = bucket

    def is_configured(self) -> bool:
        return bool(self.url and self.service_role_key and self.bucket)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    def mint_key(self, options: UploadOptions, fallback_name: Optional[str] = None) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        folder = (options.folder or "").strip("/")
        name = f"{stamp}_{secrets.token_hex(8)}.{_extension(options, fallback_name)}"
        return f"{folder}/{name}" if folder else name

    async def _upload_bytes(self, content: bytes, options: UploadOptions) -> StoredObject:
        key = self.mint_key(options)
        return await self._put(key, content, options)

    async def _upload_path(self, path: Path, options: UploadOptions) -> StoredObject:
        key = self.mint_key(options, fallback_name=path.name)
        return await self._put(key, self._stream(path), options, length=path.stat().st_size)

    async def _stream(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    async def _put(self, key: str, content, options: UploadOptions, length: Optional[int] = None) -> StoredObject:
        headers = self._headers()
        headers["Content-Type"] = options.media_type or "application/octet-stream"
        headers["x-upsert"] = "false"
        if length is not None:
            headers["Content-Length"] = str(length)

        try:
            response = await self.http.get().post(
                f"{self.url}/storage/v1/object/{self.bucket}/{key}",
                content=content,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise transport_failure(e, self.name)
        raise_for_upload_status(response, self.name)

        return StoredObject(url=self.build_access_url(key), provider_object_id=key)

    async def delete(self, provider_object_id: str) -> bool:
        try:
            response = await self.http.get().request(
                "DELETE",
                f"{self.url}/storage/v1/object/{self.bucket}",
                json={"prefixes": [provider_object_id]},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise transport_failure(e, self.name)
        if response.status_code == 404:
            return False
        raise_for_upload_status(response, self.name)

        removed = json_body(response, self.name, expected=list)
        found = bool(removed)
        logger.info("Supabase delete %s: %s", provider_object_id, "removed" if found else "not found")
        return found

    def build_access_url(self, provider_object_id: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{provider_object_id}"

    def owns_url(self, url: Optional[str]) -> bool:
        if not url:
            return False
        return url.startswith(f"{self.url}/storage/v1/object/public/{self.bucket}/")
