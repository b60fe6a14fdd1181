"""Engine configuration.

All fields can be set via ``RECON_*`` environment variables (e.g.
``RECON_MAX_RETRIES=5``) or a ``.env`` file. Per-connector concurrency
limits are given as JSON::

    RECON_CONNECTOR_CONCURRENCY='{"ldap-main": 2, "hr-db": 8}'

Retry backoff and concurrency limits are read-only at run time and shared
by every worker.

Examples:
    >>> from reconspine.core.settings import ReconSettings
    >>> ReconSettings(max_retries=5).max_retries
    5

Tags:
    settings, configuration, pydantic, environment, reconspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReconSettings(BaseSettings):
    """Reconciliation engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RECON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///data/recon.db")

    # ── Retry policy ─────────────────────────────────────────────
    max_retries: int = Field(default=3, ge=1, description="Failed attempts before dead-lettering")
    backoff_base_seconds: float = Field(default=30.0, gt=0)
    backoff_max_seconds: float = Field(default=3600.0, gt=0)
    backoff_jitter: bool = Field(default=False)

    # ── Connectors ───────────────────────────────────────────────
    connector_timeout_seconds: float = Field(default=30.0, gt=0)
    default_connector_concurrency: int = Field(default=4, ge=1)
    connector_concurrency: dict[str, int] = Field(default_factory=dict)
    connector_factory: str | None = Field(
        default=None,
        description="'module:callable' returning a ConnectorRegistry",
    )

    # ── Worker pool ──────────────────────────────────────────────
    worker_poll_interval_seconds: float = Field(default=2.0, gt=0)
    worker_batch_size: int = Field(default=50, ge=1)
    worker_max_threads: int = Field(default=8, ge=1)
    stale_after_seconds: float = Field(default=900.0, gt=0)

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=30.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("connector_concurrency")
    @classmethod
    def _positive_limits(cls, value: dict[str, int]) -> dict[str, int]:
        for connector_id, limit in value.items():
            if limit < 1:
                raise ValueError(f"concurrency for '{connector_id}' must be >= 1, got {limit}")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @model_validator(mode="after")
    def _cap_covers_base(self) -> ReconSettings:
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self

    def concurrency_for(self, connector_id: str) -> int:
        """Concurrency limit for *connector_id* (falls back to the default)."""
        return self.connector_concurrency.get(connector_id, self.default_connector_concurrency)


_settings_cache: dict[str, ReconSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ReconSettings:
    """Load, validate, and cache a :class:`ReconSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = ReconSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    _settings_cache.clear()


__all__ = ["ReconSettings", "get_settings", "clear_settings_cache"]
