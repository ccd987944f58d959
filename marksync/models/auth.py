"""Pydantic models for authentication state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, model_validator

from marksync.models.base import MarksyncBase


class AuthTokens(MarksyncBase):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: datetime
    scopes: list[str] = Field(default_factory=list)


class AuthUser(MarksyncBase):
    id: str
    username: str
    display_name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuthState(MarksyncBase):
    """Stored authentication for one provider.

    ``tokens`` is present if and only if ``authenticated`` is true.
    """

    provider_id: str
    authenticated: bool = False
    tokens: AuthTokens | None = None
    user: AuthUser | None = None
    last_auth: datetime | None = None
    last_refresh: datetime | None = None

    @model_validator(mode="after")
    def _tokens_match_flag(self) -> "AuthState":
        if self.authenticated != (self.tokens is not None):
            raise ValueError("tokens must be present exactly when authenticated is true")
        return self
