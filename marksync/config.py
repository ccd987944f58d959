"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "marksync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    database_url: str = ""  # empty selects the in-memory store

    # --- HTTP ---
    http_timeout_seconds: float = 30.0

    # --- OAuth ---
    oauth_redirect_base_url: str = "http://localhost:8000/auth/callback"
    oauth_open_browser: bool = True
    oauth_timeout_seconds: float = 300.0

    # --- GitHub ---
    github_client_id: str = ""
    github_client_secret: str = ""
    github_personal_token: str = ""

    # --- Jira ---
    jira_client_id: str = ""
    jira_client_secret: str = ""

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_prefix": "MARKSYNC_", "env_file": ".env", "env_file_encoding": "utf-8"}

    def redirect_uri(self, provider_id: str) -> str:
        return f"{self.oauth_redirect_base_url.rstrip('/')}/{provider_id}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
