"""GitHub pull-request provider.

Bookmarks every open PR the user authored and every open PR awaiting the
user's review.

Authentication:
    - Personal access token from config (``personal_access_token``) or the
      ``MARKSYNC_GITHUB_PERSONAL_TOKEN`` environment variable; validated
      against ``/user`` and stored with a far-future expiry.
    - Otherwise OAuth2 authorization code flow (``MARKSYNC_GITHUB_CLIENT_ID``).

Endpoints used:
    /user:           profile of the token's owner
    /search/issues:  ``is:pr author:<login> is:open`` and
                     ``is:pr review-requested:<login> is:open``
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

from marksync.models.auth import AuthUser
from marksync.models.items import BookmarkItem
from marksync.providers.base import AuthResult, Provider
from marksync.sync.auth_manager import OAuthConfig
from marksync.sync.dedup import dedupe_by

_REPO_RE = re.compile(r"repos/(.+)$")


def _repository_name(repository_url: str) -> str:
    match = _REPO_RE.search(repository_url or "")
    return match.group(1) if match else "unknown"


class GitHubProvider(Provider):
    """GitHub pull requests as bookmarks."""

    PROVIDER_ID = "github"
    DISPLAY_NAME = "GitHub"

    def _oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            authorization_url=self._endpoints.authorization_url,
            token_url=self._endpoints.token_url,
            client_id=self._settings.github_client_id,
            client_secret=self._settings.github_client_secret or None,
            redirect_uri=self._settings.redirect_uri(self.PROVIDER_ID),
            scopes=list(self._endpoints.scopes),
            revocation_url=self._endpoints.revocation_url,
            extra_params=dict(self._endpoints.extra_params),
        )

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        }

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def _authenticate(self) -> AuthResult:
        config = await self.get_config()
        pat = getattr(config, "personal_access_token", None) or self._settings.github_personal_token
        if pat:
            self.logger.info("Using personal access token authentication")
            user = await self._fetch_user(pat)
            await self._auth.store_static_credentials(self.PROVIDER_ID, pat, user=user)
            self.logger.info("Personal access token accepted for %s", user.username)
            return AuthResult(success=True, token=pat, user=user)

        self.logger.info("Using OAuth flow")
        state = await self._auth.authenticate(self.PROVIDER_ID)
        user = await self._fetch_user(state.tokens.access_token)
        await self._auth.update_user(self.PROVIDER_ID, user)
        return AuthResult(success=True, token=state.tokens.access_token, user=user)

    async def _fetch_user(self, token: str) -> AuthUser:
        data = await self._get_json(f"{self._endpoints.api_base_url}/user", self._headers(token))
        return AuthUser(
            id=str(data["id"]),
            username=data["login"],
            display_name=data.get("name") or data["login"],
            email=data.get("email"),
            avatar_url=data.get("avatar_url"),
            metadata={
                key: data[key] for key in ("company", "location", "bio") if data.get(key)
            },
        )

    async def _username(self, token: str) -> str:
        state = await self._auth.get_auth_state(self.PROVIDER_ID)
        if state is not None and state.user is not None:
            return state.user.username
        return (await self._fetch_user(token)).username

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def _fetch(self, token: str) -> list[BookmarkItem]:
        username = await self._username(token)
        authored, review_requested = await asyncio.gather(
            self._search(token, f"is:pr author:{username} is:open"),
            self._search(token, f"is:pr review-requested:{username} is:open"),
        )
        review_ids = {pr["node_id"] for pr in review_requested}
        unique = dedupe_by([*authored, *review_requested], key=lambda pr: pr["node_id"])
        return [self._to_item(pr, pr["node_id"] in review_ids) for pr in unique]

    async def _search(self, token: str, query: str) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{self._endpoints.api_base_url}/search/issues",
            self._headers(token),
            params={"q": query, "sort": "updated", "order": "desc", "per_page": 100},
        )
        return data.get("items", [])

    def _to_item(self, pr: dict[str, Any], review_requested: bool) -> BookmarkItem:
        author = pr.get("user") or {}
        return BookmarkItem(
            id=pr["node_id"],
            provider_id=self.PROVIDER_ID,
            title=f"#{pr['number']}: {pr['title']}",
            url=pr["html_url"],
            created_at=pr.get("created_at"),
            updated_at=pr.get("updated_at"),
            last_modified=pr.get("updated_at") or "",
            metadata={
                "number": pr["number"],
                "state": pr.get("state"),
                "author": author.get("login"),
                "author_avatar": author.get("avatar_url"),
                "repository": _repository_name(pr.get("repository_url", "")),
                "review_requested": review_requested,
            },
        )
