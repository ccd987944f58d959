"""Sync control endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from marksync.dependencies import Context
from marksync.models.control import ControlResponse, SyncIntervalUpdate

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("", response_model=ControlResponse)
async def sync_all(context: Context) -> ControlResponse:
    return await context.control.sync_all()


@router.get("/status", response_model=ControlResponse)
async def sync_status(context: Context) -> ControlResponse:
    return await context.control.get_sync_status()


@router.put("/interval", response_model=ControlResponse)
async def update_interval(context: Context, body: SyncIntervalUpdate) -> ControlResponse:
    return await context.control.update_sync_interval(body.interval)


@router.post("/{provider_id}", response_model=ControlResponse)
async def sync_provider(provider_id: str, context: Context) -> ControlResponse:
    return await context.control.sync_provider(provider_id)
