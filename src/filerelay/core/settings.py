"""Service settings for filerelay.

All knobs of the transfer service live in one ``RelaySettings`` object:
the HTTP transport, monday.com endpoints and OAuth credentials, and the
tuning of the execution primitives (circuit breaker, retry, rate limit).

The four transfer scenarios share one pipeline implementation.  What differs
between them (concurrency ceiling, backoff constants, poll intervals) is a
``PipelineProfile``, looked up by scenario name through
:meth:`RelaySettings.profile`.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads ``RELAY_*`` env vars and .env files
    - **Nested overrides:** ``RELAY_PROFILES__BOARD__MAX_CONCURRENT=8``
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> settings = RelaySettings(rate_limit_max=30)
    >>> settings.profile("board").max_concurrent
    5

Tags:
    settings, configuration, pydantic, environment, pipeline-profile
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineProfile(BaseModel):
    """Per-scenario tuning of the drain loop.

    All durations are seconds.  Tests build profiles with zero delays.
    """

    max_concurrent: int = Field(default=3, ge=1, description="Transfers in flight per pipeline")
    max_task_retries: int = Field(default=10, ge=0, description="Attempts before a task is dropped")
    inter_task_delay: float = Field(default=2.0, ge=0, description="Pause before each transfer")
    concurrency_poll_interval: float = Field(default=1.0, ge=0)
    rate_limit_poll_interval: float = Field(default=2.0, ge=0)

    # ── Backoff ──────────────────────────────────────────────────
    backoff_base: float = Field(default=2.0, ge=0, description="First standard retry delay")
    backoff_cap: float = Field(default=10.0, ge=0)
    complexity_backoff_base: float = Field(default=8.0, ge=0)
    complexity_backoff_step: float = Field(default=4.0, ge=0)
    complexity_backoff_cap: float = Field(default=15.0, ge=0)


def _default_profiles() -> dict[str, PipelineProfile]:
    return {
        "column": PipelineProfile(max_concurrent=3),
        "item": PipelineProfile(max_concurrent=3),
        "board": PipelineProfile(max_concurrent=5),
        "update": PipelineProfile(max_concurrent=3),
    }


class RelaySettings(BaseSettings):
    """Settings for the filerelay service.

    Order of precedence (highest → lowest):
        1. Environment variables (``RELAY_PORT``, ``RELAY_MONDAY__...``)
        2. ``.env`` file
        3. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Server ───────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="Bind port")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool | None = Field(default=None, description="Force JSON logs (auto on non-TTY)")

    # ── monday.com ───────────────────────────────────────────────
    monday_api_url: str = Field(default="https://api.monday.com/v2")
    monday_file_url: str = Field(default="https://api.monday.com/v2/file")
    monday_auth_url: str = Field(default="https://auth.monday.com/oauth2")
    monday_api_version: str = Field(default="2024-01")
    request_timeout: float = Field(default=30.0, description="GraphQL request timeout")
    upload_timeout: float = Field(default=60.0, description="Multipart upload timeout")

    # ── OAuth / session ──────────────────────────────────────────
    client_id: str = Field(default="", description="OAuth client id")
    client_secret: str = Field(default="", description="OAuth client secret")
    redirect_uri: str = Field(default="http://localhost:8080/oauth/callback")
    oauth_scopes: str = Field(default="me:read boards:read boards:write")
    oauth_state_ttl: float = Field(default=300.0, description="Seconds an OAuth state stays valid")
    signing_secret: str | None = Field(
        default=None,
        description="Secret for verifying session JWTs; unverified decode when unset",
    )
    token_freshness: float = Field(default=45 * 60.0, description="Seconds a cached credential is trusted")

    # ── Transfers ────────────────────────────────────────────────
    scratch_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "filerelay",
        description="Where downloads are staged before upload",
    )
    item_timeout: float = Field(default=3000.0, description="Hard ceiling on one item's processing")
    rate_limit_window: float = Field(default=60.0)
    rate_limit_max: int = Field(default=20, ge=1)
    request_concurrency: int = Field(default=5, ge=1, description="Requests in the enqueue phase at once")
    move_poll_interval: float = Field(default=1.0, ge=0)
    metrics_reset_interval: float = Field(default=3600.0, gt=0)
    download_max_attempts: int = Field(default=10, ge=1)
    download_retry_delay: float = Field(default=2.0, ge=0, description="Multiplied by the attempt number")
    page_size: int = Field(default=5, ge=1, description="File columns per remote-options page")

    # ── Circuit breaker ──────────────────────────────────────────
    breaker_failure_threshold: int = Field(default=8, ge=1)
    breaker_reset_timeout: float = Field(default=120.0)
    breaker_success_threshold: int = Field(default=2, ge=1)
    breaker_cooldown_period: float = Field(default=180.0)

    # ── Retry ────────────────────────────────────────────────────
    retry_base_delay: float = Field(default=2.0)
    retry_max_delay: float = Field(default=30.0)
    retry_max_retries: int = Field(default=5, ge=0)
    retry_jitter_factor: float = Field(default=0.2, ge=0, le=1)

    # ── Pipelines ────────────────────────────────────────────────
    profiles: dict[str, PipelineProfile] = Field(default_factory=_default_profiles)

    def profile(self, scenario: str) -> PipelineProfile:
        """Profile for *scenario*, falling back to the defaults."""
        return self.profiles.get(scenario) or PipelineProfile()
