"""
NoteFlow Backend - Component Wiring & FastAPI Dependencies
============================================================

What:  Builds the intake components from Settings, and exposes them to route
       handlers through FastAPI's dependency injection.
How:   build_components() is called once by the app lifespan and once by the
       backfill CLI. The lifespan stores the result on app.state; the get_*
       functions below read it back per request. Tests override them with
       app.dependency_overrides.
"""

import logging
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from noteflow.database import Database
from noteflow.services.classifier import PolicyLimits
from noteflow.services.compression import Compressor, CompressorFactory
from noteflow.services.http_client import HttpClientHandle
from noteflow.services.intake_service import IntakeService
from noteflow.services.scratch import TransientIntakeStore
from noteflow.services.storage import ObjectStore, ObjectStoreFactory

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything the intake pipeline needs, owned by one process."""

    http: HttpClientHandle
    scratch: TransientIntakeStore
    compressor: Compressor
    object_store: ObjectStore
    intake: IntakeService

    async def aclose(self) -> None:
        await self.http.aclose()


def build_components(settings) -> Components:
    """
    Wire the pipeline from configuration.

    Raises:
        ConfigurationError: unknown compressor backend or storage provider
    """
    http = HttpClientHandle(timeout_seconds=settings.upload_timeout_seconds)
    scratch = TransientIntakeStore(settings.scratch_dir, backing=settings.intake_backing)
    compressor = CompressorFactory.create(settings, http)
    object_store = ObjectStoreFactory.create(settings, http)
    intake = IntakeService(
        scratch=scratch,
        compressor=compressor,
        object_store=object_store,
        limits=PolicyLimits.from_settings(settings),
        folder=settings.storage_folder,
        compression_timeout=settings.compression_timeout_seconds,
        upload_timeout=settings.upload_timeout_seconds,
        compression_preset=settings.compression_preset,
    )
    return Components(
        http=http,
        scratch=scratch,
        compressor=compressor,
        object_store=object_store,
        intake=intake,
    )


# ── Request-scoped getters ────────────────────────────────────────────────


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async for session in request.app.state.database.session():
        yield session


def get_intake_service(request: Request) -> IntakeService:
    return request.app.state.components.intake


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.components.object_store


def get_compressor(request: Request) -> Compressor:
    return request.app.state.components.compressor
