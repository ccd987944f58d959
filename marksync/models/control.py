"""Request / response models for the control surface."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class ControlResponse(BaseModel):
    """Every control request answers with exactly one of these."""

    success: bool
    error: str | None = None
    status: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    cancelled: bool = False


class SyncAllMessage(BaseModel):
    type: Literal["SYNC_ALL"]


class SyncProviderMessage(BaseModel):
    type: Literal["SYNC_PROVIDER"]
    provider_id: str = Field(alias="providerId")

    model_config = {"populate_by_name": True}


class GetSyncStatusMessage(BaseModel):
    type: Literal["GET_SYNC_STATUS"]


class UpdateSyncIntervalMessage(BaseModel):
    type: Literal["UPDATE_SYNC_INTERVAL"]
    interval: int  # milliseconds


ControlMessage = Annotated[
    Union[SyncAllMessage, SyncProviderMessage, GetSyncStatusMessage, UpdateSyncIntervalMessage],
    Field(discriminator="type"),
]


class SyncIntervalUpdate(BaseModel):
    interval: int  # milliseconds


class FolderCreate(BaseModel):
    title: str = Field(min_length=1)
    parent_id: str | None = None
