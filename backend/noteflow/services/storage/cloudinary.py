"""
NoteFlow Backend - Cloudinary Object Store
============================================

What:  Stores note files in Cloudinary through its signed upload REST API.
How:   Every call is signed: sha1 of the alphabetically sorted parameters
       joined as `k=v&k=v` with the API secret appended. Uploads use
       `use_filename` + `unique_filename` so each upload gets a fresh
       public_id; destroy reports whether the object existed.

Object ids:
    Cloudinary needs the resource type (image, raw, video) to address an
    object, so provider_object_id is stored as "<resource_type>:<public_id>",
    e.g. "raw:noteflow/lecture-3_k2j4hd.pdf".

Endpoints:
    POST {api_base}/{cloud}/{resource_type}/upload
    POST {api_base}/{cloud}/{resource_type}/destroy
    GET  {delivery_base}/{cloud}/{resource_type}/upload/{public_id}
"""

import hashlib
import logging
import time
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

import httpx

from noteflow.exceptions import UploadRejectedError
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

# Parameters Cloudinary excludes from the signature
_UNSIGNED = {"file", "api_key", "resource_type", "cloud_name"}


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """Cloudinary request signature: sha1("a=1&b=2" + api_secret), empty values skipped."""
    to_sign = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in _UNSIGNED and params[key] not in (None, "")
    )
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def split_object_id(provider_object_id: str) -> Tuple[str, str]:
    """'raw:folder/x.pdf' -> ('raw', 'folder/x.pdf'); bare ids default to 'image'."""
    resource_type, sep, public_id = provider_object_id.partition(":")
    if not sep:
        return "image", provider_object_id
    return resource_type, public_id


class CloudinaryObjectStore(ObjectStore):
    name = "cloudinary"

    def __init__(
        self,
        http: HttpClientHandle,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        api_base: str = "https://api.cloudinary.com/v1_1",
        delivery_base: str = "https://res.cloudinary.com",
    ):
        self.http = http
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_base = api_base.rstrip("/")
        self.delivery_base = delivery_base.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _signed(self, params: Dict[str, str]) -> Dict[str, str]:
        params = {k: v for k, v in params.items() if v not in (None, "")}
        params["timestamp"] = str(int(time.time()))
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    def _upload_params(self, options: UploadOptions) -> Dict[str, str]:
        return self._signed(
            {
                "folder": options.folder,
                "use_filename": "true",
                "unique_filename": "true",
                "access_mode": "public",
            }
        )

    def _endpoint(self, resource_type: str, action: str) -> str:
        return f"{self.api_base}/{self.cloud_name}/{resource_type}/{action}"

    async def _upload_bytes(self, content: bytes, options: UploadOptions) -> StoredObject:
        filename = options.desired_filename or "upload"
        files = {"file": (filename, content, options.media_type or "application/octet-stream")}
        return await self._post_upload(files, options)

    async def _upload_path(self, path: Path, options: UploadOptions) -> StoredObject:
        filename = options.desired_filename or path.name
        # httpx streams the open file in chunks while building the multipart body
        with open(path, "rb") as f:
            files = {"file": (filename, f, options.media_type or "application/octet-stream")}
            return await self._post_upload(files, options)

    async def _post_upload(self, files, options: UploadOptions) -> StoredObject:
        resource_type = options.resource_type_hint or "auto"
        url = self._endpoint(resource_type, "upload")
        try:
            response = await self.http.get().post(url, data=self._upload_params(options), files=files)
        except httpx.HTTPError as e:
            raise transport_failure(e, self.name)
        raise_for_upload_status(response, self.name)

        body = json_body(response, self.name)
        secure_url = body.get("secure_url") or body.get("url") or ""
        public_id = body.get("public_id")
        if not public_id:
            raise UploadRejectedError(
                message="Cloudinary accepted the upload but returned no public_id",
                status_code=response.status_code,
                context={"provider": self.name},
            )
        actual_type = body.get("resource_type") or ("raw" if resource_type == "auto" else resource_type)
        return StoredObject(
            url=secure_url,
            provider_object_id=f"{actual_type}:{public_id}",
            resource_type=actual_type,
        )

    async def delete(self, provider_object_id: str) -> bool:
        resource_type, public_id = split_object_id(provider_object_id)
        url = self._endpoint(resource_type, "destroy")
        try:
            response = await self.http.get().post(
                url, data=self._signed({"public_id": public_id, "invalidate": "true"})
            )
        except httpx.HTTPError as e:
            raise transport_failure(e, self.name)
        raise_for_upload_status(response, self.name)

        result = json_body(response, self.name).get("result")
        if result == "ok":
            logger.info("Deleted Cloudinary object %s", provider_object_id)
            return True
        logger.info("Cloudinary object %s not found (result=%s)", provider_object_id, result)
        return False

    def build_access_url(self, provider_object_id: str) -> str:
        resource_type, public_id = split_object_id(provider_object_id)
        return f"{self.delivery_base}/{self.cloud_name}/{resource_type}/upload/{public_id}"

    def owns_url(self, url: Optional[str]) -> bool:
        if not url:
            return False
        parsed = urlparse(url)
        delivery_host = urlparse(self.delivery_base).netloc
        return parsed.netloc == delivery_host and parsed.path.startswith(f"/{self.cloud_name}/")
