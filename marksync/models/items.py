"""Pydantic models for remote items and the per-provider snapshot."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from marksync.models.base import MarksyncBase


class BookmarkItem(MarksyncBase):
    """One remote work item after mapping.

    ``(provider_id, id)`` is globally unique and ``id`` is stable across
    repeated fetches of the same remote item; it is the reconciliation key.
    ``last_modified`` is the remote's own change marker, compared verbatim.
    """

    id: str
    provider_id: str
    title: str
    url: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_modified: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider_id, self.id)


class SnapshotEntry(MarksyncBase):
    """A reconciled item and the bookmark that represents it."""

    item: BookmarkItem
    bookmark_id: str
