"""Configuration management using pydantic-settings.

Key patterns:
1. Multiple env files (.env, .env.local) - local overrides shared
2. Optional API key with a startup warning instead of an import failure
3. validation_alias for explicit env var names
4. Singleton instance for easy import

Usage:
    from tandem.agent.config import settings
    print(settings.model)
"""

import logging
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tandem.lib.hooks import HookErrorPolicy

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The endpoint key and URL use the standard ``OPENAI_*`` names so any
    OpenAI-compatible provider can be pointed at. Runtime settings use
    the ``AGENT_`` prefix.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        extra="ignore",
    )

    @model_validator(mode="after")
    def warn_missing_optional_keys(self) -> Self:
        """Warn at startup if the endpoint key is missing."""
        if not self.openai_api_key:
            logger.warning(
                "OPENAI_API_KEY is not set; requests to %s will likely be rejected",
                self.openai_base_url,
            )
        return self

    # ==========================================================================
    # ENDPOINT
    # ==========================================================================

    openai_api_key: str | None = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
        description="Key for the chat-completions endpoint",
    )

    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        validation_alias="OPENAI_BASE_URL",
        description="Base URL of an OpenAI-compatible API",
    )

    model: str = Field(
        default="gpt-4o",
        validation_alias="AGENT_MODEL",
        description="Model name sent with every request",
    )

    temperature: float | None = Field(
        default=None,
        validation_alias="AGENT_TEMPERATURE",
        description="Sampling temperature (None = endpoint default)",
    )

    # ==========================================================================
    # LOOP
    # ==========================================================================

    max_steps: int = Field(
        default=10,
        ge=1,
        validation_alias="AGENT_MAX_STEPS",
        description="Step limit per call",
    )

    hook_error_policy: HookErrorPolicy = Field(
        default=HookErrorPolicy.PROPAGATE,
        validation_alias="AGENT_HOOK_ERROR_POLICY",
        description="What to do when a hook raises: silent, logged or propagate",
    )

    wait_warning_seconds: float = Field(
        default=300.0,
        ge=0.0,
        validation_alias="AGENT_WAIT_WARNING_SECONDS",
        description="Warn this often while waiting on sub-agents (0 = never)",
    )

    # ==========================================================================
    # PATHS
    # ==========================================================================

    sessions_path: str = Field(
        default="./data/sessions",
        validation_alias="AGENT_SESSIONS_PATH",
        description="Base path for saved conversations",
    )

    traces_path: str = Field(
        default="./data/traces",
        validation_alias="AGENT_TRACES_PATH",
        description="Base path for markdown traces",
    )

    # ==========================================================================
    # HTTP / CONCURRENCY
    # ==========================================================================

    http_timeout_seconds: int = Field(
        default=120,
        validation_alias="AGENT_HTTP_TIMEOUT_SECONDS",
        description="Timeout for model requests",
    )

    max_retries: int = Field(
        default=3,
        ge=1,
        validation_alias="AGENT_MAX_RETRIES",
        description="Attempts per model request, including the first",
    )

    max_concurrent_requests: int = Field(
        default=5,
        ge=1,
        validation_alias="AGENT_MAX_CONCURRENT_REQUESTS",
        description="Max concurrent model requests across all agents",
    )

    min_request_interval: float = Field(
        default=0.0,
        ge=0.0,
        validation_alias="AGENT_MIN_REQUEST_INTERVAL",
        description="Minimum seconds between request starts",
    )


# Singleton instance
settings = Settings.model_validate({})
