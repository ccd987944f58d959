"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from marksync.context import AppContext


async def get_context(request: Request) -> AppContext:
    """Return the AppContext attached to the app by ``create_app``."""
    context: AppContext | None = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return context


# Annotated shortcuts for route signatures
Context = Annotated[AppContext, Depends(get_context)]
