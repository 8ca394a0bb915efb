"""
NoteFlow Backend - Health Check Route
=======================================

What:  Liveness/readiness check reporting database reachability, whether the
       remote object store has credentials, and which compressor is active.

Status levels:
    healthy:    database reachable, object store configured, compressor available
    degraded:   compressor unavailable (small files still upload; large PDFs fail)
    unhealthy:  database unreachable or object store unconfigured (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text

from noteflow import __version__
from noteflow.database import Database
from noteflow.dependencies import get_compressor, get_database, get_object_store
from noteflow.schemas.note import HealthResponse
from noteflow.services.compression.base import Compressor
from noteflow.services.storage.base import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(
    response: Response,
    database: Database = Depends(get_database),
    object_store: ObjectStore = Depends(get_object_store),
    compressor: Compressor = Depends(get_compressor),
) -> HealthResponse:
    overall = "healthy"

    db_status = "connected"
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if object_store.is_configured():
        store_status = f"{object_store.name}: configured"
    else:
        store_status = f"{object_store.name}: unconfigured"
        overall = "unhealthy"

    if await compressor.is_available():
        compressor_status = f"{compressor.name}: available"
    else:
        compressor_status = f"{compressor.name}: unavailable"
        if overall == "healthy":
            overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        object_store=store_status,
        compressor=compressor_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
