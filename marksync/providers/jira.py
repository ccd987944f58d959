"""Jira issue provider.

Bookmarks the user's unresolved issues: those they reported and/or those
assigned to them, per ``filters.created_by_me`` / ``filters.assigned_to_me``
(both default to true).

Config fields:
    base_url:             Jira site, e.g. ``yourteam.atlassian.net``
    auth_type:            ``oauth`` | ``api-token`` | ``basic``
    username:             account email (api-token) or login (basic)
    api_token:            Atlassian API token (Cloud)
    password:             password (Server / Data Center)
    filters:              ``{created_by_me: bool, assigned_to_me: bool}``
    title_format:         TitleFormatOptions; plain ``<summary> [<KEY>]`` by default
    folder_title_format:  FolderTitleFormat; appends ``(N total)`` to the folder title

Cloud sites (``*.atlassian.net``) use REST API v3 and ``/search/jql``;
anything else is treated as Server and uses REST API v2 ``/search``.
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any

from marksync.errors import AuthenticationError, ConfigurationError
from marksync.models.auth import AuthUser
from marksync.models.items import BookmarkItem
from marksync.models.storage import FolderTitleFormat, ProviderConfig, TitleFormatOptions
from marksync.providers.base import AuthResult, Provider
from marksync.sync.auth_manager import OAuthConfig
from marksync.sync.dedup import dedupe_by

AUTH_TYPES = ("oauth", "api-token", "basic")

_PAGE_SIZE = 100
_FIELDS = "summary,status,priority,issuetype,project,assignee,reporter,created,updated"

# First match wins; more specific names come before their substrings.
_PRIORITY_EMOJI = (
    (("highest", "blocker"), "\N{LARGE RED CIRCLE}"),
    (("high",), "\N{LARGE ORANGE CIRCLE}"),
    (("medium",), "\N{LARGE YELLOW CIRCLE}"),
    (("lowest",), "\N{LARGE BLUE CIRCLE}"),
    (("low",), "\N{LARGE GREEN CIRCLE}"),
)
_ISSUE_TYPE_EMOJI = (
    (("bug", "defect"), "\N{BUG}"),
    (("epic",), "\N{BOOKS}"),
    (("story",), "\N{OPEN BOOK}"),
    (("sub-task", "subtask"), "\N{MEMO}"),
    (("task",), "\N{WHITE HEAVY CHECK MARK}"),
    (("improvement", "enhancement"), "\N{HIGH VOLTAGE SIGN}"),
    (("spike",), "\N{MICROSCOPE}"),
)
_STALE_DAYS = 7


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and default the scheme to https."""
    normalized = url.strip().rstrip("/")
    if not normalized.startswith(("http://", "https://")):
        normalized = f"https://{normalized}"
    return normalized


def is_cloud(base_url: str) -> bool:
    return "atlassian.net" in base_url


def basic_token(username: str, secret: str) -> str:
    return base64.b64encode(f"{username}:{secret}".encode()).decode()


def build_jql(
    user_identifier: str, cloud: bool, created_by_me: bool = True, assigned_to_me: bool = True
) -> str | None:
    """JQL for the user's open issues, or None when no filter is enabled."""
    ident = f'"{user_identifier}"' if cloud else user_identifier
    conditions = []
    if created_by_me:
        conditions.append(f"reporter = {ident}")
    if assigned_to_me:
        conditions.append(f"assignee = {ident}")
    if not conditions:
        return None
    return f"({' OR '.join(conditions)}) AND statusCategory != Done ORDER BY updated DESC"


def _parse_time(value: str | None) -> datetime | None:
    # Jira timestamps look like 2024-01-15T10:30:00.000+0000
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError:
        return None


def _name(field: dict | None, key: str = "name") -> str | None:
    return field.get(key) if field else None


def _emoji_for(name: str, table) -> str | None:
    lowered = name.lower()
    for needles, emoji in table:
        if any(needle in lowered for needle in needles):
            return emoji
    return None


def _first_name(person: dict | None) -> str | None:
    display = _name(person, "displayName")
    return display.split(" ")[0] if display else None


def format_issue_title(
    issue: dict[str, Any], options: TitleFormatOptions, now: datetime | None = None
) -> str:
    """Bookmark title for an issue.

    Plain options give ``<summary> [<KEY>]``.  Otherwise the parts are, in
    order: ``[KEY]``, priority, issue type, arrow and assignee,
    ``@reporter:``, age in days, summary.
    """
    fields = issue.get("fields") or {}
    summary = fields.get("summary", "")
    key = issue["key"]
    if options.is_plain:
        return f"{summary} [{key}]"

    parts = [f"[{key}]"]
    priority = _name(fields.get("priority"))
    if options.include_priority and priority:
        if options.include_emojis:
            emoji = _emoji_for(priority, _PRIORITY_EMOJI)
            if emoji:
                parts.append(emoji)
        else:
            parts.append(f"[{priority.upper()}]")

    issue_type = _name(fields.get("issuetype"))
    if options.include_status and issue_type:
        if options.include_emojis:
            emoji = _emoji_for(issue_type, _ISSUE_TYPE_EMOJI)
            if emoji:
                parts.append(emoji)
        else:
            parts.append(f"[{issue_type.upper()}]")

    if options.include_assignee:
        assignee = _first_name(fields.get("assignee")) or "unassigned"
        parts.append(f"\N{RIGHTWARDS ARROW}@{assignee}")

    reporter = _first_name(fields.get("reporter"))
    if options.include_creator and reporter:
        parts.append(f"@{reporter}:")

    created = _parse_time(fields.get("created"))
    if options.include_age and created:
        age_days = ((now or datetime.now(timezone.utc)) - created).days
        if not options.include_emojis:
            parts.append(f"[{age_days}d]")
        elif age_days > _STALE_DAYS:
            parts.append(f"\N{ALARM CLOCK} {age_days}d")
        else:
            parts.append(f"{age_days}d")

    parts.append(summary)
    return " ".join(parts)


def build_folder_title(
    base_name: str, item_count: int, options: FolderTitleFormat
) -> str | None:
    """Folder title with item statistics, or None when disabled."""
    if not options.enabled:
        return None
    if item_count == 0:
        return f"{base_name} (empty)"
    if options.include_total:
        return f"{base_name} ({item_count} total)"
    return base_name


class JiraProvider(Provider):
    """Jira Cloud / Server issues as bookmarks."""

    PROVIDER_ID = "jira"
    DISPLAY_NAME = "Jira"

    def _default_config(self) -> ProviderConfig:
        return ProviderConfig(
            enabled=False,
            auth_type="api-token",
            filters={"created_by_me": True, "assigned_to_me": True},
            title_format=TitleFormatOptions(),
            folder_title_format=FolderTitleFormat(),
        )

    def _oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            authorization_url=self._endpoints.authorization_url,
            token_url=self._endpoints.token_url,
            client_id=self._settings.jira_client_id,
            client_secret=self._settings.jira_client_secret or None,
            redirect_uri=self._settings.redirect_uri(self.PROVIDER_ID),
            scopes=list(self._endpoints.scopes),
            revocation_url=self._endpoints.revocation_url,
            extra_params=dict(self._endpoints.extra_params),
        )

    # ------------------------------------------------------------------
    # Config helpers
    # ------------------------------------------------------------------

    def _auth_type(self, config: ProviderConfig) -> str:
        auth_type = getattr(config, "auth_type", None) or "api-token"
        if auth_type not in AUTH_TYPES:
            raise ConfigurationError(
                f"Unsupported Jira auth type '{auth_type}'. Expected one of {list(AUTH_TYPES)}"
            )
        return auth_type

    def _base_url(self, config: ProviderConfig) -> str:
        base_url = getattr(config, "base_url", None)
        if not base_url:
            raise ConfigurationError("Jira base URL is not configured")
        return normalize_base_url(base_url)

    def _headers(self, token: str, auth_type: str) -> dict[str, str]:
        scheme = "Bearer" if auth_type == "oauth" else "Basic"
        return {"Authorization": f"{scheme} {token}", "Accept": "application/json"}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def _authenticate(self) -> AuthResult:
        config = await self.get_config()
        auth_type = self._auth_type(config)
        base_url = self._base_url(config)
        self.logger.info("Authenticating with Jira at %s using %s", base_url, auth_type)

        if auth_type == "oauth":
            state = await self._auth.authenticate(self.PROVIDER_ID)
            token = state.tokens.access_token
            user = self._to_user(await self._fetch_myself(base_url, token, auth_type))
            await self._auth.update_user(self.PROVIDER_ID, user)
            return AuthResult(success=True, token=token, user=user)

        username = getattr(config, "username", None)
        secret_field = "api_token" if auth_type == "api-token" else "password"
        secret = getattr(config, secret_field, None)
        if not username or not secret:
            raise ConfigurationError(
                f"username and {secret_field} are required for {auth_type} authentication"
            )
        token = basic_token(username, secret)
        user = self._to_user(await self._fetch_myself(base_url, token, auth_type), username)
        await self._auth.store_static_credentials(
            self.PROVIDER_ID, token, user=user, token_type="Basic"
        )
        self.logger.info("Jira %s authentication successful for %s", auth_type, username)
        return AuthResult(success=True, token=token, user=user)

    async def format_folder_title(self, base_name: str, items: list[BookmarkItem]) -> str | None:
        config = await self.get_config()
        return build_folder_title(
            base_name, len(items), config.folder_title_format or FolderTitleFormat()
        )

    async def refresh_token(self) -> None:
        # static credentials have nothing to refresh
        if self._auth_type(await self.get_config()) == "oauth":
            await super().refresh_token()

    async def _fetch_myself(self, base_url: str, token: str, auth_type: str) -> dict[str, Any]:
        version = "3" if is_cloud(base_url) else "2"
        return await self._get_json(
            f"{base_url}/rest/api/{version}/myself", self._headers(token, auth_type)
        )

    def _to_user(self, data: dict[str, Any], username: str | None = None) -> AuthUser:
        user_id = data.get("accountId") or data.get("key") or data.get("name")
        if not user_id:
            raise AuthenticationError("Jira returned no user identity", provider_id=self.PROVIDER_ID)
        return AuthUser(
            id=user_id,
            username=username or data.get("emailAddress") or data.get("name") or user_id,
            display_name=data.get("displayName"),
            email=data.get("emailAddress"),
            avatar_url=(data.get("avatarUrls") or {}).get("48x48"),
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def _fetch(self, token: str) -> list[BookmarkItem]:
        config = await self.get_config()
        auth_type = self._auth_type(config)
        base_url = self._base_url(config)
        cloud = is_cloud(base_url)

        myself = await self._fetch_myself(base_url, token, auth_type)
        identifier = myself.get("accountId") if cloud else (myself.get("name") or myself.get("key"))
        filters = getattr(config, "filters", None) or {}
        jql = build_jql(
            identifier,
            cloud,
            created_by_me=filters.get("created_by_me", True),
            assigned_to_me=filters.get("assigned_to_me", True),
        )
        if jql is None:
            self.logger.info("No Jira filters enabled, nothing to fetch")
            return []

        headers = self._headers(token, auth_type)
        if cloud:
            issues = await self._search_cloud(base_url, headers, jql)
        else:
            issues = await self._search_server(base_url, headers, jql)
        unique = dedupe_by(issues, key=lambda issue: str(issue["id"]))
        title_format = config.title_format or TitleFormatOptions()
        return [self._to_item(issue, base_url, title_format) for issue in unique]

    async def _search_cloud(
        self, base_url: str, headers: dict[str, str], jql: str
    ) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        params: dict[str, Any] = {"jql": jql, "maxResults": _PAGE_SIZE, "fields": _FIELDS}
        while True:
            data = await self._get_json(f"{base_url}/rest/api/3/search/jql", headers, params=params)
            issues.extend(data.get("issues", []))
            next_token = data.get("nextPageToken")
            if not next_token or data.get("isLast", False):
                return issues
            params = {**params, "nextPageToken": next_token}

    async def _search_server(
        self, base_url: str, headers: dict[str, str], jql: str
    ) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        start_at = 0
        while True:
            data = await self._get_json(
                f"{base_url}/rest/api/2/search",
                headers,
                params={"jql": jql, "maxResults": _PAGE_SIZE, "startAt": start_at, "fields": _FIELDS},
            )
            page = data.get("issues", [])
            issues.extend(page)
            start_at += len(page)
            if not page or start_at >= data.get("total", 0):
                return issues

    def _to_item(
        self, issue: dict[str, Any], base_url: str, title_format: TitleFormatOptions
    ) -> BookmarkItem:
        fields = issue.get("fields") or {}
        key = issue["key"]
        return BookmarkItem(
            id=str(issue["id"]),
            provider_id=self.PROVIDER_ID,
            title=format_issue_title(issue, title_format),
            url=f"{base_url}/browse/{key}",
            created_at=_parse_time(fields.get("created")),
            updated_at=_parse_time(fields.get("updated")),
            last_modified=fields.get("updated") or "",
            metadata={
                "key": key,
                "status": _name(fields.get("status")),
                "priority": _name(fields.get("priority")),
                "issue_type": _name(fields.get("issuetype")),
                "project": _name(fields.get("project"), "key"),
                "assignee": _name(fields.get("assignee"), "displayName"),
                "reporter": _name(fields.get("reporter"), "displayName"),
            },
        )
