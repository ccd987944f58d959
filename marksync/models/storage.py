"""Pydantic models for persisted records: settings and per-provider data."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from marksync.models.auth import AuthState
from marksync.models.base import MarksyncBase
from marksync.models.items import SnapshotEntry

DEFAULT_SYNC_INTERVAL_MS = 60_000


class UserSettings(MarksyncBase):
    sync_interval: int = Field(default=DEFAULT_SYNC_INTERVAL_MS, gt=0)  # milliseconds
    theme: Literal["light", "dark", "auto"] = "auto"


class TitleFormatOptions(MarksyncBase):
    """Which details a provider puts into bookmark titles.

    With every ``include_*`` flag off except ``include_emojis`` the provider
    uses its plain title.  Accepts camelCase keys (``includeStatus``).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    include_status: bool = False
    include_emojis: bool = True
    include_assignee: bool = False
    include_priority: bool = False
    include_age: bool = False
    include_creator: bool = False

    @property
    def is_plain(self) -> bool:
        return not (
            self.include_status
            or self.include_priority
            or self.include_creator
            or self.include_age
            or self.include_assignee
        )


class FolderTitleFormat(MarksyncBase):
    """Item statistics appended to the target folder title after each sync."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    include_total: bool = True


class ProviderConfig(MarksyncBase):
    """Provider configuration.

    Provider-specific fields (``base_url``, ``auth_type``, ``filters`` ...) are
    kept as extra fields so a partial update never loses them.  Declared fields
    also accept their camelCase names (``folderId``).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    enabled: bool = False
    folder_id: str | None = Field(default=None, alias="folderId")
    title_format: TitleFormatOptions | None = Field(default=None, alias="titleFormat")
    folder_title_format: FolderTitleFormat | None = Field(
        default=None, alias="folderTitleFormat"
    )

    @property
    def is_sync_eligible(self) -> bool:
        return self.enabled and bool(self.folder_id)

    def merged(self, changes: dict[str, Any]) -> "ProviderConfig":
        """Return a copy with ``changes`` applied over every existing field."""
        aliases = {
            field.alias: name
            for name, field in ProviderConfig.model_fields.items()
            if field.alias
        }
        renamed = {aliases.get(key, key): value for key, value in changes.items()}
        return ProviderConfig.model_validate({**self.model_dump(), **renamed})


class ProviderRecord(MarksyncBase):
    """Everything persisted under ``providers[id]``."""

    config: ProviderConfig = Field(default_factory=ProviderConfig)
    auth: AuthState | None = None
    last_sync: datetime | None = None
    last_error: str | None = None
    items: list[SnapshotEntry] = Field(default_factory=list)
