"""Provider status, configuration and connection endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from marksync.dependencies import Context
from marksync.models.control import ControlResponse
from marksync.providers.base import Provider
from marksync.sync.registry import ProviderRegistry

router = APIRouter(prefix="/providers", tags=["providers"])
logger = logging.getLogger("marksync.routers.providers")


def _provider_or_404(registry: ProviderRegistry, provider_id: str) -> Provider:
    provider = registry.get_provider(provider_id)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider_id}'")
    return provider


@router.get("")
async def list_providers(context: Context) -> list[dict]:
    return [s.to_dict() for s in await context.registry.get_all_provider_statuses()]


@router.get("/{provider_id}")
async def get_provider(provider_id: str, context: Context) -> dict:
    _provider_or_404(context.registry, provider_id)
    return (await context.registry.get_provider_status(provider_id)).to_dict()


@router.patch("/{provider_id}/config")
async def update_config(
    provider_id: str, context: Context, changes: dict[str, Any] = Body(...)
) -> dict:
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    provider = _provider_or_404(context.registry, provider_id)
    config = await provider.set_config(changes)
    return config.model_dump()


@router.post("/{provider_id}/connect", response_model=ControlResponse)
async def connect(provider_id: str, context: Context) -> ControlResponse:
    provider = _provider_or_404(context.registry, provider_id)
    result = await provider.authenticate()
    if not result.success:
        # a cancelled flow is not an error worth surfacing
        return ControlResponse(
            success=False,
            error=None if result.cancelled else result.error,
            cancelled=result.cancelled,
        )
    user = result.user.model_dump(mode="json") if result.user else None
    return ControlResponse(success=True, result={"user": user})


@router.post("/{provider_id}/disconnect", response_model=ControlResponse)
async def disconnect(provider_id: str, context: Context) -> ControlResponse:
    provider = _provider_or_404(context.registry, provider_id)
    try:
        await provider.revoke_auth()
    except Exception as exc:
        logger.warning("Disconnect failed for %s: %s", provider_id, exc)
        return ControlResponse(success=False, error=str(exc))
    return ControlResponse(success=True)
