"""
NoteFlow Backend - Remote Object Store Adapters
=================================================

What:  Durable, publicly addressable storage for note files.
How:   ObjectStoreFactory picks one by name (STORAGE_PROVIDER).

    cloudinary → CloudinaryObjectStore   (signed upload API)
    supabase   → SupabaseObjectStore     (Storage REST API)
"""

from noteflow.services.storage.base import ObjectStore, StoredObject, UploadOptions
from noteflow.services.storage.cloudinary import CloudinaryObjectStore
from noteflow.services.storage.factory import ObjectStoreFactory
from noteflow.services.storage.supabase import SupabaseObjectStore

__all__ = [
    "CloudinaryObjectStore",
    "ObjectStore",
    "ObjectStoreFactory",
    "StoredObject",
    "SupabaseObjectStore",
    "UploadOptions",
]
