"""Resilience settings, read from the environment.

Every knob of the resilience layer lives here so that deployments can tune
probe endpoints and retry budgets without code changes.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not at first retry
    - **Environment-driven:** ``CARELINE_*`` env vars and ``.env`` files
    - **Sensible defaults:** The network-quality retry convention
      (1 retry / 2000 ms on poor links, 3 / 1000 ms otherwise) works
      out of the box

Examples:
    >>> from careline.core.settings import ResilienceSettings
    >>> ResilienceSettings().probe_timeout_s
    5.0

    $ CARELINE_POOR_MAX_RETRIES=0 careline config

Tags:
    settings, configuration, pydantic, environment, careline
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResilienceSettings(BaseSettings):
    """Settings for the network monitor and retry orchestrator.

    Fields
    ──────
    debug                 : Enable debug mode (verbose logging)
    log_level             : Structlog log level
    json_logs             : Force JSON (True) or console (False) logs; None → auto
    probe_url             : Same-origin endpoint for the connectivity probe
    probe_timeout_s       : Hard bound on a single probe
    probe_interval_s      : Periodic probe interval while monitoring
    max_delay_ms          : Cap on any single retry delay
    default_max_retries   : Retry budget on good/fair links
    default_base_delay_ms : Base delay on good/fair links
    poor_max_retries      : Retry budget on poor links
    poor_base_delay_ms    : Base delay on poor links
    exponential_backoff   : Default backoff mode for network-derived policies
    network_aware         : Default network awareness for network-derived policies
    """

    model_config = SettingsConfigDict(
        env_prefix="CARELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Connectivity probe ───────────────────────────────────────
    probe_url: str = "http://localhost:8080/favicon.ico"
    probe_timeout_s: float = Field(default=5.0, gt=0)
    probe_interval_s: float = Field(default=30.0, gt=0)

    # ── Retry budgets ────────────────────────────────────────────
    max_delay_ms: int = Field(default=30_000, gt=0)
    default_max_retries: int = Field(default=3, ge=0)
    default_base_delay_ms: int = Field(default=1000, gt=0)
    poor_max_retries: int = Field(default=1, ge=0)
    poor_base_delay_ms: int = Field(default=2000, gt=0)
    exponential_backoff: bool = True
    network_aware: bool = True


@lru_cache(maxsize=1)
def get_settings() -> ResilienceSettings:
    """Return the process-wide settings instance."""
    return ResilienceSettings()


__all__ = ["ResilienceSettings", "get_settings"]
