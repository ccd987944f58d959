"""Provider capability interface.

Every item source subclasses Provider and implements ``_authenticate()`` and
``_fetch()``.  Token questions are delegated to the shared AuthManager and
configuration lives in the provider's persisted record, so a provider itself
holds no credentials between calls.

Failure policy: providers raise the ``marksync.errors`` taxonomy and never
retry.  ``authenticate()`` is the one exception; it reports failure through
``AuthResult`` instead of raising.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from marksync.config import Settings
from marksync.errors import AuthenticationError, NetworkError, SyncError
from marksync.models.auth import AuthUser
from marksync.models.items import BookmarkItem
from marksync.models.storage import ProviderConfig, ProviderRecord
from marksync.services.storage import Storage
from marksync.sync.auth_manager import AuthManager, OAuthConfig
from marksync.sync.config_loader import ProviderEndpoints

logger = logging.getLogger("marksync.providers")


@dataclass
class AuthResult:
    """Outcome of ``Provider.authenticate()``.

    Attributes:
        success:   True when the provider now holds a usable credential.
        token:     The access token, on success.
        user:      Profile of the authenticated account, on success.
        error:     Failure description.
        cancelled: True when the user aborted the interactive flow.
    """

    success: bool
    token: str | None = None
    user: AuthUser | None = None
    error: str | None = None
    cancelled: bool = False


class Provider(ABC):
    """Abstract base class for item sources.

    Subclasses must set PROVIDER_ID and DISPLAY_NAME and implement:
        - _authenticate()
        - _fetch()

    Optional overrides:
        - _default_config()
        - _oauth_config()
        - format_folder_title()
        - dispose()
    """

    PROVIDER_ID: str = ""
    DISPLAY_NAME: str = ""
    VERSION: str = "1.0.0"

    def __init__(
        self,
        storage: Storage,
        auth_manager: AuthManager,
        endpoints: ProviderEndpoints,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._storage = storage
        self._auth = auth_manager
        self._endpoints = endpoints
        self._settings = settings
        self._http_client = http_client
        self._initialized = False
        self.logger = logging.getLogger(f"marksync.providers.{self.PROVIDER_ID}")

    @property
    def provider_id(self) -> str:
        return self.PROVIDER_ID

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the default record if missing and register OAuth endpoints."""
        if self._initialized:
            return
        if await self._storage.get_provider(self.PROVIDER_ID) is None:
            self.logger.info("Creating initial record for %s", self.PROVIDER_ID)
            await self._storage.save_provider(
                self.PROVIDER_ID, ProviderRecord(config=self._default_config())
            )
        oauth = self._oauth_config()
        if oauth is not None:
            self._auth.register_oauth_config(self.PROVIDER_ID, oauth)
        self._initialized = True
        self.logger.info("%s provider initialized", self.DISPLAY_NAME)

    async def dispose(self) -> None:
        self.logger.debug("Disposing %s provider", self.PROVIDER_ID)

    def _default_config(self) -> ProviderConfig:
        return ProviderConfig(enabled=False)

    def _oauth_config(self) -> OAuthConfig | None:
        return None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self) -> AuthResult:
        """Authenticate with the source. Never raises."""
        self.logger.info("Starting %s authentication", self.DISPLAY_NAME)
        try:
            return await self._authenticate()
        except AuthenticationError as exc:
            if exc.cancelled:
                self.logger.info("%s authentication cancelled", self.DISPLAY_NAME)
            else:
                self.logger.warning("%s authentication failed: %s", self.DISPLAY_NAME, exc)
            return AuthResult(success=False, error=str(exc), cancelled=exc.cancelled)
        except SyncError as exc:
            self.logger.warning("%s authentication failed: %s", self.DISPLAY_NAME, exc)
            return AuthResult(success=False, error=str(exc))
        except Exception as exc:
            self.logger.exception("Unexpected %s authentication failure", self.DISPLAY_NAME)
            return AuthResult(success=False, error=str(exc) or type(exc).__name__)

    @abstractmethod
    async def _authenticate(self) -> AuthResult:
        """Run the provider's authentication path, raising on failure."""

    async def is_authenticated(self) -> bool:
        return await self._auth.is_authenticated(self.PROVIDER_ID)

    async def get_token(self) -> str | None:
        return await self._auth.get_token(self.PROVIDER_ID)

    async def refresh_token(self) -> None:
        await self._auth.refresh_token(self.PROVIDER_ID)

    async def revoke_auth(self) -> None:
        await self._auth.revoke_auth(self.PROVIDER_ID)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def fetch_items(self) -> list[BookmarkItem]:
        """Fetch, merge and deduplicate the user's current items.

        Raises:
            AuthenticationError: No valid token, or the source rejected it.
            NetworkError:        Any other remote failure.
        """
        token = await self.get_token()
        if not token:
            raise AuthenticationError("Not authenticated", provider_id=self.PROVIDER_ID)
        items = await self._fetch(token)
        self.logger.info("Fetched %d items from %s", len(items), self.DISPLAY_NAME)
        return items

    @abstractmethod
    async def _fetch(self, token: str) -> list[BookmarkItem]:
        """Query the source with ``token`` and map results to unique items."""

    async def format_folder_title(self, base_name: str, items: list[BookmarkItem]) -> str | None:
        """Target folder title after a sync, or None to leave the folder title alone."""
        return None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def get_config(self) -> ProviderConfig:
        record = await self._storage.get_provider(self.PROVIDER_ID)
        return record.config if record else self._default_config()

    async def set_config(self, changes: dict[str, Any]) -> ProviderConfig:
        """Merge ``changes`` into the stored config.

        Auth state, snapshot and timestamps are left as they are.
        """

        def _apply(record: ProviderRecord) -> ProviderRecord:
            return record.model_copy(update={"config": record.config.merged(changes)})

        updated = await self._storage.update_provider(self.PROVIDER_ID, _apply)
        self.logger.info("Updated config for %s: %s", self.PROVIDER_ID, sorted(changes))
        return updated.config

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET ``url`` and decode JSON, mapping failures onto the error taxonomy."""
        try:
            if self._http_client:
                response = await self._http_client.get(url, headers=headers, params=params)
            else:
                async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as client:
                    response = await client.get(url, headers=headers, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise AuthenticationError(
                    f"{self.DISPLAY_NAME} rejected the credentials ({status})",
                    provider_id=self.PROVIDER_ID,
                ) from exc
            raise NetworkError(
                f"{self.DISPLAY_NAME} API error ({status})", status_code=status
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{self.DISPLAY_NAME} unreachable: {exc}") from exc
        return response.json()
