"""Provider registry: construction, initialization and status of every provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from marksync.errors import ConfigurationError
from marksync.models.storage import ProviderConfig
from marksync.providers.base import AuthResult, Provider
from marksync.services.storage import Storage

logger = logging.getLogger("marksync.sync.registry")


@dataclass
class ProviderStatus:
    """Live view of one provider for status endpoints.

    Attributes:
        provider_id:   Provider id.
        display_name:  Human-readable name.
        version:       Provider implementation version.
        enabled:       Config ``enabled`` flag.
        folder_id:     Target bookmark folder, if set.
        authenticated: Provider holds a valid, unexpired credential.
        username:      Authenticated account, if known.
        last_sync:     Time of the last successful sync.
        last_error:    Message of the last failed sync, cleared on success.
        item_count:    Items in the stored snapshot.
    """

    provider_id: str
    display_name: str
    version: str
    enabled: bool = False
    folder_id: str | None = None
    authenticated: bool = False
    username: str | None = None
    last_sync: datetime | None = None
    last_error: str | None = None
    item_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "display_name": self.display_name,
            "version": self.version,
            "enabled": self.enabled,
            "folder_id": self.folder_id,
            "authenticated": self.authenticated,
            "username": self.username,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "last_error": self.last_error,
            "item_count": self.item_count,
        }


@dataclass
class InitializationReport:
    """Which providers initialized and which failed (with the error message)."""

    initialized: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class ProviderRegistry:
    """Holds one instance of each provider, keyed by id.

    Usage::

        registry = ProviderRegistry(storage, [GitHubProvider(...), JiraProvider(...)])
        await registry.initialize()
        provider = registry.get_provider("github")
    """

    def __init__(self, storage: Storage, providers: Iterable[Provider]) -> None:
        self._storage = storage
        self._providers: dict[str, Provider] = {}
        for provider in providers:
            if provider.provider_id in self._providers:
                raise ValueError(f"Duplicate provider id '{provider.provider_id}'")
            self._providers[provider.provider_id] = provider
        self._report: InitializationReport | None = None

    @property
    def initialized(self) -> bool:
        return self._report is not None

    async def initialize(self) -> InitializationReport:
        """Initialize every provider once; one failure never blocks the rest."""
        if self._report is not None:
            return self._report
        report = InitializationReport()
        for provider_id, provider in self._providers.items():
            try:
                await provider.initialize()
                report.initialized.append(provider_id)
            except Exception as exc:
                logger.error("Failed to initialize provider %s: %s", provider_id, exc)
                report.failed[provider_id] = str(exc)
        logger.info(
            "Provider registry initialized: %d ok, %d failed",
            len(report.initialized),
            len(report.failed),
        )
        self._report = report
        return report

    async def dispose(self) -> None:
        for provider_id, provider in self._providers.items():
            try:
                await provider.dispose()
            except Exception:
                logger.exception("Failed to dispose provider %s", provider_id)
        self._report = None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_provider(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id)

    def require_provider(self, provider_id: str) -> Provider:
        """Like get_provider, raising ConfigurationError for unknown ids."""
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(f"Unknown provider '{provider_id}'")
        return provider

    def get_all_providers(self) -> list[Provider]:
        return list(self._providers.values())

    def get_provider_ids(self) -> list[str]:
        return list(self._providers)

    async def get_provider_status(self, provider_id: str) -> ProviderStatus:
        provider = self.require_provider(provider_id)
        record = await self._storage.get_provider(provider_id)
        config = record.config if record else ProviderConfig()
        auth = record.auth if record else None
        return ProviderStatus(
            provider_id=provider_id,
            display_name=provider.DISPLAY_NAME,
            version=provider.VERSION,
            enabled=config.enabled,
            folder_id=config.folder_id,
            authenticated=await provider.is_authenticated(),
            username=auth.user.username if auth and auth.user else None,
            last_sync=record.last_sync if record else None,
            last_error=record.last_error if record else None,
            item_count=len(record.items) if record else 0,
        )

    async def get_all_provider_statuses(self) -> list[ProviderStatus]:
        return [await self.get_provider_status(pid) for pid in self._providers]

    # ------------------------------------------------------------------
    # Convenience actions
    # ------------------------------------------------------------------

    async def authenticate_provider(self, provider_id: str) -> AuthResult:
        return await self.require_provider(provider_id).authenticate()

    async def revoke_provider_auth(self, provider_id: str) -> None:
        await self.require_provider(provider_id).revoke_auth()

    async def update_provider_config(
        self, provider_id: str, changes: dict[str, Any]
    ) -> ProviderConfig:
        return await self.require_provider(provider_id).set_config(changes)
