"""Request/response control surface over the scheduler.

Every request returns exactly one ``ControlResponse``.  Failures come back
as ``{success: false, error}``; nothing raised below reaches the caller.
"""

from __future__ import annotations

import logging

from marksync.errors import SyncError
from marksync.models.control import (
    ControlMessage,
    ControlResponse,
    GetSyncStatusMessage,
    SyncAllMessage,
    SyncProviderMessage,
    UpdateSyncIntervalMessage,
)
from marksync.sync.registry import ProviderRegistry
from marksync.sync.scheduler import BackgroundScheduler

logger = logging.getLogger("marksync.sync.control")


def _failure(exc: Exception) -> ControlResponse:
    if isinstance(exc, SyncError):
        return ControlResponse(success=False, error=str(exc))
    logger.exception("Unexpected error handling control request")
    return ControlResponse(success=False, error=str(exc) or type(exc).__name__)


class ControlSurface:
    def __init__(self, scheduler: BackgroundScheduler, registry: ProviderRegistry) -> None:
        self._scheduler = scheduler
        self._registry = registry

    async def sync_all(self) -> ControlResponse:
        try:
            sweep = await self._scheduler.sync_all()
        except Exception as exc:
            return _failure(exc)
        return ControlResponse(success=True, result=sweep.to_dict())

    async def sync_provider(self, provider_id: str) -> ControlResponse:
        try:
            result = await self._scheduler.sync_provider(provider_id)
        except Exception as exc:
            return _failure(exc)
        return ControlResponse(success=True, result=result.to_dict())

    async def get_sync_status(self) -> ControlResponse:
        try:
            status = (await self._scheduler.get_status()).to_dict()
            status["providers"] = [
                s.to_dict() for s in await self._registry.get_all_provider_statuses()
            ]
        except Exception as exc:
            return _failure(exc)
        return ControlResponse(success=True, status=status)

    async def update_sync_interval(self, interval_ms: int) -> ControlResponse:
        try:
            timer = await self._scheduler.update_sync_interval(interval_ms)
        except Exception as exc:
            return _failure(exc)
        return ControlResponse(success=True, result={"periodic": timer.to_dict()})

    async def handle(self, message: ControlMessage) -> ControlResponse:
        """Dispatch a typed control message."""
        if isinstance(message, SyncAllMessage):
            return await self.sync_all()
        if isinstance(message, SyncProviderMessage):
            return await self.sync_provider(message.provider_id)
        if isinstance(message, GetSyncStatusMessage):
            return await self.get_sync_status()
        if isinstance(message, UpdateSyncIntervalMessage):
            return await self.update_sync_interval(message.interval)
        return ControlResponse(success=False, error=f"Unknown message type: {message!r}")
