"""Validated per-unit execution configuration.

``UnitConfig`` replaces "spread defaults over partial overrides" merges:
every value is range-checked when the config is built, and an invalid
value raises :class:`~tilespine.core.errors.ConfigurationError`
immediately instead of surfacing later as odd runtime behaviour.

ARCHITECTURE
────────────
::

    TilespineSettings (env)  ──►  UnitConfig.from_settings()   global layer
                                       │
                                       ▼
    ConfigBuilder(base).with_timeout_ms(500).with_max_retries(1).build()
                                       │
                                       ▼
                              UnitConfig (frozen, validated)

Example::

    config = (
        ConfigBuilder()
        .with_max_retries(2)
        .with_timeout_ms(50)
        .with_graceful_degradation(False)
        .build()
    )
    config.timeout_seconds   # 0.05

Tags:
    tilespine, execution, configuration, pydantic, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from tilespine.core.errors import ConfigurationError
from tilespine.core.settings import TilespineSettings, get_settings

_SETTINGS_FIELDS = (
    "refresh_interval_ms",
    "max_retries",
    "timeout_ms",
    "cache_ttl_ms",
    "graceful_degradation",
    "backoff_base_ms",
    "backoff_cap_ms",
    "jitter_ms",
    "degradation_factor",
    "confidence_floor",
    "circuit_breaker_threshold",
    "circuit_recovery_ms",
)


class UnitConfig(BaseModel):
    """Resilience settings for one unit.

    Fields
    ──────
    refresh_interval_ms        : How often external callers re-trigger a run
    max_retries                : Additional attempts after the first failure
    timeout_ms                 : Deadline for a single compute attempt
    cache_ttl_ms               : Lifetime of a cached good report (0 disables hits)
    graceful_degradation       : Degrade instead of erroring once retries run out
    backoff_base_ms            : First retry delay
    backoff_cap_ms             : Upper bound on the exponential delay
    jitter_ms                  : Upper bound of uniform random jitter added to each delay
    degradation_factor         : Multiplier applied to the last good confidence
    confidence_floor           : Minimum degraded confidence
    circuit_breaker_threshold  : Exhausted executions before the breaker opens (0 = off)
    circuit_recovery_ms        : Time the breaker stays open before a trial call
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

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

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"Invalid unit configuration: {field or 'config'}: {first['msg']}",
                field=field,
                cause=exc,
            ) from exc

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> UnitConfig:
        if self.backoff_cap_ms < self.backoff_base_ms:
            raise ValueError(
                f"backoff_cap_ms ({self.backoff_cap_ms}) must be >= backoff_base_ms ({self.backoff_base_ms})"
            )
        return self

    # ── Construction helpers ─────────────────────────────────────

    @classmethod
    def from_settings(cls, settings: TilespineSettings | None = None) -> UnitConfig:
        """Build the global default config from environment settings."""
        settings = settings or get_settings()
        return cls(**{name: getattr(settings, name) for name in _SETTINGS_FIELDS})

    def merged(self, **overrides: Any) -> UnitConfig:
        """Return a new validated config with ``overrides`` applied."""
        return UnitConfig(**{**self.model_dump(), **overrides})

    # ── Derived values (seconds) ─────────────────────────────────

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_ms / 1000.0

    @property
    def refresh_interval_seconds(self) -> float:
        return self.refresh_interval_ms / 1000.0

    @property
    def circuit_recovery_seconds(self) -> float:
        return self.circuit_recovery_ms / 1000.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class ConfigBuilder:
    """Fluent builder over a base :class:`UnitConfig`.

    Values are collected by the ``with_*`` methods and validated together
    by :meth:`build`, so partially-applied overrides never leak out.
    """

    def __init__(self, base: UnitConfig | None = None):
        self._base = base or UnitConfig()
        self._overrides: dict[str, Any] = {}

    def _set(self, name: str, value: Any) -> ConfigBuilder:
        self._overrides[name] = value
        return self

    def with_refresh_interval_ms(self, value: int) -> ConfigBuilder:
        return self._set("refresh_interval_ms", value)

    def with_max_retries(self, value: int) -> ConfigBuilder:
        return self._set("max_retries", value)

    def with_timeout_ms(self, value: int) -> ConfigBuilder:
        return self._set("timeout_ms", value)

    def with_cache_ttl_ms(self, value: int) -> ConfigBuilder:
        return self._set("cache_ttl_ms", value)

    def with_graceful_degradation(self, enabled: bool = True) -> ConfigBuilder:
        return self._set("graceful_degradation", enabled)

    def with_backoff(self, *, base_ms: int, cap_ms: int, jitter_ms: int | None = None) -> ConfigBuilder:
        self._set("backoff_base_ms", base_ms)
        self._set("backoff_cap_ms", cap_ms)
        if jitter_ms is not None:
            self._set("jitter_ms", jitter_ms)
        return self

    def with_degradation(self, *, factor: float, floor: float | None = None) -> ConfigBuilder:
        self._set("degradation_factor", factor)
        if floor is not None:
            self._set("confidence_floor", floor)
        return self

    def with_circuit_breaker(self, *, threshold: int, recovery_ms: int | None = None) -> ConfigBuilder:
        self._set("circuit_breaker_threshold", threshold)
        if recovery_ms is not None:
            self._set("circuit_recovery_ms", recovery_ms)
        return self

    def build(self) -> UnitConfig:
        """Validate and return the config.

        Raises:
            ConfigurationError: If any value is out of range
        """
        return self._base.merged(**self._overrides)


__all__ = ["ConfigBuilder", "UnitConfig"]
