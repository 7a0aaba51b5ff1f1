"""
Application Settings.

Centralized configuration using Pydantic Settings with environment variable loading.
Every field has a default so the CLI runs with an empty environment; values
are validated at startup.

Production Mode:
    When app_env="production", additional validations apply:
    - backend cannot be "memory"
    - vault_default_action must be "deny"
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines (False for a human-readable console)",
    )

    # -------------------------------------------------------------------------
    # Backend
    # -------------------------------------------------------------------------
    backend: Literal["memory", "aws"] = Field(
        default="memory",
        description="Secret store / access binder backend",
    )
    aws_region: str = Field(
        default="ap-northeast-1",
        description="AWS region for Secrets Manager and IAM",
    )
    vault_name: str = Field(
        default="vaultseed",
        description="Vault name; also the resource id that grants on the whole vault target",
    )
    operator_identity: str = Field(
        default="operator",
        description="Identity the orchestrator writes secrets as",
    )
    operator_origin: str | None = Field(
        default=None,
        description="IP address the orchestrator reaches the vault from",
    )
    operator_trusted_platform: bool = Field(
        default=False,
        description="Orchestrator runs as a trusted platform service",
    )
    aws_secret_prefix: str = Field(
        default="vaultseed/",
        description="Name prefix for secrets created in Secrets Manager",
    )

    # -------------------------------------------------------------------------
    # Secret Generation
    # -------------------------------------------------------------------------
    min_secret_length: int = Field(
        default=8,
        ge=1,
        description="Minimum generated secret length accepted by the vault",
    )
    default_secret_length: int = Field(
        default=16,
        ge=1,
        description="Length used when an empty raw value falls back to generation",
    )

    # -------------------------------------------------------------------------
    # Timeouts & Polling
    # -------------------------------------------------------------------------
    confirm_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Total budget for binding propagation confirmation",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Initial interval between binding confirmation polls",
    )
    max_poll_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Ceiling for the confirmation poll interval",
    )
    poll_backoff: Literal["fixed", "exponential"] = Field(
        default="exponential",
        description="Backoff strategy between confirmation polls",
    )
    store_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single secret write acknowledgment",
    )
    grant_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single access grant request",
    )
    max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum concurrent materialize/store pairs",
    )
    run_retries: int = Field(
        default=0,
        ge=0,
        description="Automatic resubmissions of a run that failed transiently",
    )

    # -------------------------------------------------------------------------
    # In-memory Backend
    # -------------------------------------------------------------------------
    simulated_propagation_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Delay before an in-memory grant becomes effective",
    )

    # -------------------------------------------------------------------------
    # Vault Network Policy
    # -------------------------------------------------------------------------
    vault_bypass_trusted_platform: bool = Field(
        default=True,
        description="Let trusted platform callers bypass the network rules",
    )
    vault_default_action: Literal["allow", "deny"] = Field(
        default="allow",
        description="Action for callers that match no allow-list entry",
    )
    vault_allowed_origins: list[str] = Field(
        default_factory=list,
        description="CIDR ranges allowed to reach the vault",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production settings are secure."""
        if self.max_poll_interval_seconds < self.poll_interval_seconds:
            raise ValueError(
                "max_poll_interval_seconds must be >= poll_interval_seconds"
            )

        if self.default_secret_length < self.min_secret_length:
            raise ValueError(
                "default_secret_length must be >= min_secret_length"
            )

        if self.app_env == "production":
            errors = []

            if self.backend == "memory":
                errors.append("backend cannot be 'memory' in production")

            if self.vault_default_action != "deny":
                errors.append("vault_default_action must be 'deny' in production")

            if errors:
                raise ValueError(
                    f"Production configuration errors: {'; '.join(errors)}"
                )

        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings if needed.
    """
    return Settings()
