"""Typed message dispatch: ``{"type": "SYNC_ALL" | "SYNC_PROVIDER" | ...}``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException
from pydantic import TypeAdapter, ValidationError

from marksync.dependencies import Context
from marksync.models.control import ControlMessage, ControlResponse

router = APIRouter(tags=["sync"])

_messages = TypeAdapter(ControlMessage)


@router.post("/messages", response_model=ControlResponse)
async def handle_message(context: Context, payload: dict[str, Any] = Body(...)) -> ControlResponse:
    try:
        message = _messages.validate_python(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc
    return await context.control.handle(message)
