"""OAuth redirect target for the browser-based authorization launcher."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from marksync.dependencies import Context
from marksync.sync.launcher import WebAuthLauncher

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/callback/{provider_id}")
async def oauth_callback(provider_id: str, request: Request, context: Context) -> dict:
    launcher = context.launcher
    if not isinstance(launcher, WebAuthLauncher):
        raise HTTPException(status_code=404, detail="Browser authorization is not enabled")
    if not launcher.complete(str(request.url)):
        raise HTTPException(status_code=400, detail="No authorization in progress for this request")
    return {"provider_id": provider_id, "status": "received", "detail": "You can close this window."}
