"""
NoteFlow Backend - Object Store Factory
=========================================

What:  Turns STORAGE_PROVIDER into a concrete ObjectStore.
How:   A name → builder registry, the same shape as CompressorFactory.
       Missing credentials are not checked here; the store reports them
       through is_configured() and startup validation refuses to boot.
"""

import logging
from typing import Callable, Dict

from noteflow.exceptions import ConfigurationError
from noteflow.services.http_client import HttpClientHandle
from noteflow.services.storage.base import ObjectStore
from noteflow.services.storage.cloudinary import CloudinaryObjectStore
from noteflow.services.storage.supabase import SupabaseObjectStore

logger = logging.getLogger(__name__)


def _cloudinary(settings, http: HttpClientHandle) -> ObjectStore:
    return CloudinaryObjectStore(
        http=http,
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        api_base=settings.cloudinary_api_base,
        delivery_base=settings.cloudinary_delivery_base,
    )


def _supabase(settings, http: HttpClientHandle) -> ObjectStore:
    return SupabaseObjectStore(
        http=http,
        url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        bucket=settings.supabase_bucket,
    )


class ObjectStoreFactory:
    PROVIDERS: Dict[str, Callable[..., ObjectStore]] = {
        "cloudinary": _cloudinary,
        "supabase": _supabase,
    }

    @classmethod
    def create(cls, settings, http: HttpClientHandle) -> ObjectStore:
        builder = cls.PROVIDERS.get(settings.storage_provider)
        if builder is None:
            raise ConfigurationError(
                message=f"Unknown storage provider '{settings.storage_provider}'",
                context={"supported": sorted(cls.PROVIDERS)},
            )
        store = builder(settings, http)
        logger.info("Object store selected: %s (configured=%s)", store.name, store.is_configured())
        return store
