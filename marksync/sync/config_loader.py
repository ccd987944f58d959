"""Load and validate the synchronization tuning file.

The config lives in ``sync_config.yaml`` alongside this module.  It is read
once when the application context is built; call ``load_sync_config()`` with
a path to use another file.

Usage::

    from marksync.sync.config_loader import load_sync_config

    config = load_sync_config()
    config.scheduler.max_retries            # 3
    config.provider("github").scopes       # ['repo', 'read:user', 'read:org']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("marksync.sync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class SchedulerConfig:
    """Retry and periodic-sync settings."""

    max_retries: int = 3
    retry_delay_minutes: float = 5
    default_sync_interval_ms: int = 60_000
    min_period_minutes: int = 1


@dataclass
class AuthConfig:
    """Token lifecycle settings."""

    refresh_buffer_seconds: int = 300
    static_token_lifetime_days: int = 365
    default_expires_in_seconds: int = 3600


@dataclass
class ProviderEndpoints:
    """OAuth endpoints and API base for one provider."""

    authorization_url: str
    token_url: str
    api_base_url: str = ""
    revocation_url: str | None = None
    scopes: list[str] = field(default_factory=list)
    extra_params: dict[str, str] = field(default_factory=dict)


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:   Config schema version string.
        scheduler: Retry / interval settings.
        auth:      Token lifecycle settings.
        providers: Endpoints keyed by provider id.
    """

    version: str = "1.0"
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    providers: dict[str, ProviderEndpoints] = field(default_factory=dict)

    def provider(self, provider_id: str) -> ProviderEndpoints:
        """Return endpoints for a provider.

        Raises:
            KeyError: If the provider has no entry in the config.
        """
        if provider_id not in self.providers:
            raise KeyError(
                f"No endpoints configured for provider '{provider_id}'. "
                f"Available: {list(self.providers)}"
            )
        return self.providers[provider_id]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every problem is collected before raising so one run reports them all.

    Raises:
        ConfigValidationError: If any value is missing or out of range.
    """
    errors: list[str] = []

    def _int(section: dict, key: str, default: int, minimum: int, name: str) -> int:
        value = section.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be an integer, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{name}.{key} = {number} must be >= {minimum}")
        return number

    # ── Scheduler ──
    sch_raw = raw.get("scheduler") or {}
    scheduler = SchedulerConfig(
        max_retries=_int(sch_raw, "max_retries", 3, 0, "scheduler"),
        retry_delay_minutes=_int(sch_raw, "retry_delay_minutes", 5, 1, "scheduler"),
        default_sync_interval_ms=_int(sch_raw, "default_sync_interval_ms", 60_000, 1, "scheduler"),
        min_period_minutes=_int(sch_raw, "min_period_minutes", 1, 1, "scheduler"),
    )

    # ── Auth ──
    auth_raw = raw.get("auth") or {}
    auth = AuthConfig(
        refresh_buffer_seconds=_int(auth_raw, "refresh_buffer_seconds", 300, 0, "auth"),
        static_token_lifetime_days=_int(auth_raw, "static_token_lifetime_days", 365, 1, "auth"),
        default_expires_in_seconds=_int(auth_raw, "default_expires_in_seconds", 3600, 1, "auth"),
    )

    # ── Providers ──
    providers: dict[str, ProviderEndpoints] = {}
    for provider_id, cfg in (raw.get("providers") or {}).items():
        if not isinstance(cfg, dict):
            errors.append(f"providers.{provider_id} must be a mapping")
            continue
        missing = [k for k in ("authorization_url", "token_url") if not cfg.get(k)]
        if missing:
            errors.append(f"providers.{provider_id} is missing {', '.join(missing)}")
            continue
        scopes: Any = cfg.get("scopes", [])
        if not isinstance(scopes, list):
            errors.append(f"providers.{provider_id}.scopes must be a list")
            scopes = []
        providers[provider_id] = ProviderEndpoints(
            authorization_url=cfg["authorization_url"],
            token_url=cfg["token_url"],
            api_base_url=cfg.get("api_base_url", ""),
            revocation_url=cfg.get("revocation_url"),
            scopes=[str(s) for s in scopes],
            extra_params={str(k): str(v) for k, v in (cfg.get("extra_params") or {}).items()},
        )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=str(raw.get("version", "1.0")),
        scheduler=scheduler,
        auth=auth,
        providers=providers,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.

    Returns:
        Validated SyncConfig instance.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config
