"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from marksync.dependencies import Context

router = APIRouter(tags=["system"])
logger = logging.getLogger("marksync.health")


@router.get("/health")
async def health_check(context: Context) -> dict:
    """Liveness probe. Returns 200 if the process is up.

    Also performs a lightweight storage read.
    """
    storage_ok = False
    try:
        await context.storage.get_settings()
        storage_ok = True
    except Exception as exc:
        logger.warning("Health check storage probe failed: %s", exc)

    status = await context.scheduler.get_status()
    return {
        "status": "healthy" if storage_ok else "degraded",
        "version": context.settings.app_version,
        "environment": context.settings.environment,
        "storage": "connected" if storage_ok else "unreachable",
        "sync_in_progress": status.sync_in_progress,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
