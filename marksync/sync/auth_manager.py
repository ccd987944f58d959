"""OAuth 2.0 flow execution and token lifecycle for every provider.

The auth manager owns ``AuthState`` persistence and token freshness; it knows
nothing about a provider's items.  Providers register their OAuth endpoints
at initialization and delegate every token question here.

Concurrency:
    - At most one interactive authorization runs per provider.  A second
      ``authenticate()`` call while one is in flight awaits the same outcome.
    - Refreshes for one provider are serialized; callers that were waiting
      re-read the stored tokens instead of refreshing again.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable
from urllib.parse import parse_qsl, urlparse

import httpx
from authlib.common.security import generate_token
from authlib.oauth2 import OAuth2Error
from authlib.oauth2.rfc6749.parameters import (
    parse_authorization_code_response,
    prepare_grant_uri,
)

from marksync.errors import AuthenticationError, ConfigurationError, NetworkError
from marksync.models.auth import AuthState, AuthTokens, AuthUser
from marksync.models.base import utc_now
from marksync.services.storage import Storage
from marksync.sync.config_loader import AuthConfig

logger = logging.getLogger("marksync.sync.auth")


@dataclass
class OAuthConfig:
    """OAuth 2.0 client registration for one provider.

    Attributes:
        authorization_url: Interactive authorization endpoint.
        token_url:         Code exchange / refresh endpoint.
        client_id:         OAuth client id.
        redirect_uri:      Where the authorization server sends the user back.
        scopes:            Requested scopes.
        client_secret:     Optional client secret.
        revocation_url:    Token revocation endpoint, when the source has one.
        extra_params:      Additional authorization URL parameters.
    """

    authorization_url: str
    token_url: str
    client_id: str
    redirect_uri: str
    scopes: list[str] = field(default_factory=list)
    client_secret: str | None = None
    revocation_url: str | None = None
    extra_params: dict[str, str] = field(default_factory=dict)


class AuthorizationLauncher(ABC):
    """Runs the interactive part of an authorization-code flow."""

    @abstractmethod
    async def launch(self, url: str) -> str:
        """Send the user to ``url`` and return the redirect URL they come back with.

        Raises:
            AuthenticationError: With ``cancelled=True`` if the user aborts.
        """


class AuthManager:
    """Authorization flows and token state for all providers.

    Usage::

        auth = AuthManager(storage, sync_config.auth, launcher, http_client=client)
        auth.register_oauth_config("github", OAuthConfig(...))
        state = await auth.authenticate("github")
        token = await auth.get_token("github")
    """

    def __init__(
        self,
        storage: Storage,
        config: AuthConfig,
        launcher: AuthorizationLauncher,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._config = config
        self._launcher = launcher
        self._http_client = http_client
        self._clock = clock
        self._oauth_configs: dict[str, OAuthConfig] = {}
        self._in_flight: dict[str, asyncio.Future[AuthState]] = {}
        self._refresh_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_oauth_config(self, provider_id: str, config: OAuthConfig) -> None:
        """Store the OAuth registration for a provider. Last write wins."""
        logger.debug("Registering OAuth config for %s", provider_id)
        self._oauth_configs[provider_id] = config

    def get_oauth_config(self, provider_id: str) -> OAuthConfig | None:
        return self._oauth_configs.get(provider_id)

    def _require_config(self, provider_id: str) -> OAuthConfig:
        config = self._oauth_configs.get(provider_id)
        if config is None:
            raise ConfigurationError(f"No OAuth config registered for provider '{provider_id}'")
        if not config.client_id:
            raise ConfigurationError(f"OAuth client id for provider '{provider_id}' is not set")
        return config

    # ------------------------------------------------------------------
    # Interactive authorization
    # ------------------------------------------------------------------

    async def authenticate(self, provider_id: str) -> AuthState:
        """Run the authorization-code flow and persist the resulting AuthState.

        Concurrent calls for the same provider share one flow.

        Raises:
            ConfigurationError:  No usable OAuth registration.
            AuthenticationError: Rejected, mismatched or cancelled flow.
            NetworkError:        Token endpoint unreachable or failing.
        """
        pending = self._in_flight.get(provider_id)
        if pending is None:
            pending = asyncio.ensure_future(self._run_authorization(provider_id))
            self._in_flight[provider_id] = pending

            def _forget(fut: asyncio.Future, pid: str = provider_id) -> None:
                if self._in_flight.get(pid) is fut:
                    del self._in_flight[pid]

            pending.add_done_callback(_forget)
        else:
            logger.info("Authorization already in flight for %s, joining it", provider_id)
        # shield: one impatient caller must not cancel the flow for the others
        return await asyncio.shield(pending)

    def is_authorizing(self, provider_id: str) -> bool:
        return provider_id in self._in_flight

    async def _run_authorization(self, provider_id: str) -> AuthState:
        config = self._require_config(provider_id)
        state = generate_token(32)
        url = prepare_grant_uri(
            config.authorization_url,
            config.client_id,
            "code",
            redirect_uri=config.redirect_uri,
            scope=config.scopes,
            state=state,
            **config.extra_params,
        )

        logger.info("Launching authorization flow for %s", provider_id)
        redirect_url = await self._launcher.launch(url)

        params = dict(parse_qsl(urlparse(redirect_url).query))
        if "error" in params:
            error = params["error"]
            raise AuthenticationError(
                params.get("error_description") or error,
                provider_id=provider_id,
                cancelled=error == "access_denied",
            )
        try:
            code = parse_authorization_code_response(redirect_url, state=state)["code"]
        except OAuth2Error as exc:
            raise AuthenticationError(
                f"Invalid authorization response: {exc.error}", provider_id=provider_id
            ) from exc

        data = await self._token_request(
            provider_id,
            config,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": config.redirect_uri,
            },
        )
        now = self._clock()
        auth_state = AuthState(
            provider_id=provider_id,
            authenticated=True,
            tokens=self._parse_token_response(data),
            last_auth=now,
        )
        await self._storage.save_auth(provider_id, auth_state)
        logger.info("Authorization successful for %s", provider_id)
        return auth_state

    # ------------------------------------------------------------------
    # Static credentials
    # ------------------------------------------------------------------

    async def store_static_credentials(
        self,
        provider_id: str,
        access_token: str,
        user: AuthUser | None = None,
        token_type: str = "Bearer",
    ) -> AuthState:
        """Persist a validated long-lived credential (PAT, API token).

        The credential gets a far-future expiry and no refresh token.
        """
        now = self._clock()
        auth_state = AuthState(
            provider_id=provider_id,
            authenticated=True,
            tokens=AuthTokens(
                access_token=access_token,
                token_type=token_type,
                expires_at=now + timedelta(days=self._config.static_token_lifetime_days),
            ),
            user=user,
            last_auth=now,
        )
        await self._storage.save_auth(provider_id, auth_state)
        return auth_state

    async def update_user(self, provider_id: str, user: AuthUser) -> AuthState:
        """Attach a fetched user profile to the stored AuthState."""
        auth_state = await self._storage.get_auth(provider_id)
        if auth_state is None or not auth_state.authenticated:
            raise AuthenticationError("Not authenticated", provider_id=provider_id)
        enriched = auth_state.model_copy(update={"user": user})
        await self._storage.save_auth(provider_id, enriched)
        return enriched

    # ------------------------------------------------------------------
    # Token state
    # ------------------------------------------------------------------

    async def get_auth_state(self, provider_id: str) -> AuthState | None:
        return await self._storage.get_auth(provider_id)

    async def is_authenticated(self, provider_id: str) -> bool:
        auth_state = await self._storage.get_auth(provider_id)
        if auth_state is None or not auth_state.authenticated or auth_state.tokens is None:
            return False
        return not self._is_expired(auth_state.tokens)

    async def get_token(self, provider_id: str) -> str | None:
        """Return a usable access token, refreshing it first when needed.

        Returns None when there is no token, or it has expired and cannot be
        refreshed.
        """
        auth_state = await self._storage.get_auth(provider_id)
        if auth_state is None or auth_state.tokens is None:
            return None
        tokens = auth_state.tokens
        if not self._needs_refresh(tokens):
            return tokens.access_token
        if not tokens.refresh_token:
            if self._is_expired(tokens):
                logger.info("Token for %s expired and cannot be refreshed", provider_id)
                return None
            return tokens.access_token

        logger.debug("Token for %s expiring, refreshing", provider_id)
        async with self._refresh_locks[provider_id]:
            current = await self._storage.get_auth(provider_id)
            if current is not None and current.tokens is not None and not self._needs_refresh(current.tokens):
                return current.tokens.access_token
            refreshed = await self._refresh_locked(provider_id, current)
        return refreshed.access_token

    async def refresh_token(self, provider_id: str) -> AuthTokens:
        """Exchange the stored refresh token for a new access token.

        A rejected refresh credential clears the stored AuthState before the
        error is raised; transient network failures leave it in place.

        Raises:
            AuthenticationError: No refresh token, or the remote rejected it.
            NetworkError:        Token endpoint unreachable or failing.
        """
        async with self._refresh_locks[provider_id]:
            current = await self._storage.get_auth(provider_id)
            return await self._refresh_locked(provider_id, current)

    async def _refresh_locked(
        self, provider_id: str, auth_state: AuthState | None
    ) -> AuthTokens:
        if auth_state is None or auth_state.tokens is None or not auth_state.tokens.refresh_token:
            raise AuthenticationError("No refresh token available", provider_id=provider_id)
        config = self._require_config(provider_id)

        logger.info("Refreshing token for %s", provider_id)
        try:
            data = await self._token_request(
                provider_id,
                config,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": auth_state.tokens.refresh_token,
                },
            )
        except AuthenticationError:
            logger.warning("Refresh token for %s rejected, clearing auth state", provider_id)
            await self._storage.delete_auth(provider_id)
            raise

        tokens = self._parse_token_response(data, existing_refresh_token=auth_state.tokens.refresh_token)
        await self._storage.save_auth(
            provider_id,
            auth_state.model_copy(update={"tokens": tokens, "last_refresh": self._clock()}),
        )
        logger.info("Token refreshed for %s", provider_id)
        return tokens

    async def revoke_auth(self, provider_id: str) -> None:
        """Revoke remotely when the source supports it, then clear AuthState.

        Config and snapshot are untouched.  A failed remote revocation is
        logged; the local state is cleared regardless.
        """
        logger.info("Revoking authentication for %s", provider_id)
        auth_state = await self._storage.get_auth(provider_id)
        config = self._oauth_configs.get(provider_id)
        if (
            auth_state is not None
            and auth_state.tokens is not None
            and config is not None
            and config.revocation_url
            and auth_state.tokens.token_type.lower() == "bearer"
        ):
            try:
                await self._post(
                    config.revocation_url,
                    {"token": auth_state.tokens.access_token, "client_id": config.client_id},
                )
            except httpx.HTTPError as exc:
                logger.warning("Remote revocation failed for %s: %s", provider_id, exc)
        await self._storage.delete_auth(provider_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_expired(self, tokens: AuthTokens) -> bool:
        return self._clock() >= tokens.expires_at

    def _needs_refresh(self, tokens: AuthTokens) -> bool:
        buffer = timedelta(seconds=self._config.refresh_buffer_seconds)
        return self._clock() >= tokens.expires_at - buffer

    def _parse_token_response(
        self, data: dict[str, Any], existing_refresh_token: str | None = None
    ) -> AuthTokens:
        expires_in = int(data.get("expires_in") or self._config.default_expires_in_seconds)
        scope = data.get("scope") or ""
        return AuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or existing_refresh_token,
            token_type=data.get("token_type") or "Bearer",
            expires_at=self._clock() + timedelta(seconds=expires_in),
            scopes=scope.replace(",", " ").split(),
        )

    async def _post(self, url: str, data: dict[str, str]) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http_client:
            response = await self._http_client.post(url, data=data, headers=headers)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, data=data, headers=headers)
        response.raise_for_status()
        return response

    async def _token_request(
        self, provider_id: str, config: OAuthConfig, form: dict[str, str]
    ) -> dict[str, Any]:
        """POST to the token endpoint, mapping failures onto the error taxonomy."""
        form = {**form, "client_id": config.client_id}
        if config.client_secret:
            form["client_secret"] = config.client_secret
        try:
            response = await self._post(config.token_url, form)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (400, 401, 403):
                raise AuthenticationError(
                    f"Token endpoint rejected the request ({status})", provider_id=provider_id
                ) from exc
            raise NetworkError(f"Token endpoint failed ({status})", status_code=status) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Token endpoint unreachable: {exc}") from exc

        data = response.json()
        # some servers answer 200 with an error body
        if "error" in data or "access_token" not in data:
            raise AuthenticationError(
                data.get("error_description") or data.get("error") or "No access token in response",
                provider_id=provider_id,
            )
        return data
