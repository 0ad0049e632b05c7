"""Global defaults for tilespine, read from the environment.

Every unit's configuration can be overridden per unit; these settings
are the global layer underneath. Fields map to ``TILESPINE_*``
environment variables (``TILESPINE_MAX_RETRIES=3``) or a ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from tilespine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.max_concurrency
    8

Tags:
    settings, configuration, pydantic, environment, tilespine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TilespineSettings(BaseSettings):
    """Environment-driven defaults for units and the orchestrator."""

    model_config = SettingsConfigDict(
        env_prefix="TILESPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Unit defaults ────────────────────────────────────────────
    refresh_interval_ms: int = Field(default=30_000, gt=0)
    max_retries: int = Field(default=2, ge=0)
    timeout_ms: int = Field(default=15_000, gt=0)
    cache_ttl_ms: int = Field(default=60_000, ge=0)
    graceful_degradation: bool = True
    backoff_base_ms: int = Field(default=1_000, ge=0)
    backoff_cap_ms: int = Field(default=5_000, ge=0)
    jitter_ms: int = Field(default=1_000, ge=0)
    degradation_factor: float = Field(default=0.7, gt=0.0, lt=1.0)
    confidence_floor: float = Field(default=0.3, gt=0.0, le=1.0)
    circuit_breaker_threshold: int = Field(default=3, ge=0)
    circuit_recovery_ms: int = Field(default=60_000, gt=0)

    # ── Orchestrator ─────────────────────────────────────────────
    max_concurrency: int = Field(default=8, gt=0)
    run_timeout_seconds: float | None = Field(default=None, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "console"


_settings: TilespineSettings | None = None


def get_settings(*, _force_reload: bool = False) -> TilespineSettings:
    """Load and cache a :class:`TilespineSettings` instance."""
    global _settings
    if _settings is None or _force_reload:
        _settings = TilespineSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    global _settings
    _settings = None


__all__ = ["TilespineSettings", "clear_settings_cache", "get_settings"]
