from __future__ import annotations

from pydantic import (
    AliasChoices,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared_breaker.circuit_breaker.config import CircuitBreakerConfig
from shared_breaker.logging import get_log_level_value
from shared_breaker.retry import RetryBackoffPolicy

ENV_PREFIX = "CIRCUIT_BREAKER_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(
        env_prefix=prefix,
        case_sensitive=False,
        populate_by_name=True,
    )


class BreakerSettings(BaseSettings):
    """Environment configuration for one breaker-protected deployment.

    ``breaker_id`` falls back to ``AWS_LAMBDA_FUNCTION_NAME`` so a function can
    guard its dependency under its own deployment name. ``dynamodb_table`` also
    reads ``CIRCUITBREAKER_TABLE``. At most one shared store may be configured;
    with neither, state stays in process memory.
    """

    model_config = prefixed_settings_config(ENV_PREFIX)

    breaker_id: str = Field(
        validation_alias=AliasChoices(
            f"{ENV_PREFIX}breaker_id",
            "aws_lambda_function_name",
        ),
    )
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_ms: int = 5000
    fail_open: bool = False
    single_probe: bool = True
    store_retry_attempts: int = 3
    store_retry_min_seconds: float = 0.01
    store_retry_max_seconds: float = 0.1
    redis_url: str | None = None
    redis_key_prefix: str = "circuit_breaker:"
    dynamodb_table: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            f"{ENV_PREFIX}dynamodb_table",
            "circuitbreaker_table",
        ),
    )
    dynamodb_endpoint_url: str | None = None
    dynamodb_region: str | None = None
    log_level: str = "INFO"

    @field_validator("breaker_id", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        return normalized

    @field_validator(
        "redis_url",
        "dynamodb_table",
        "dynamodb_endpoint_url",
        "dynamodb_region",
        mode="before",
    )
    @classmethod
    def _blank_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.timeout_ms < 1:
            raise ValueError("timeout_ms must be >= 1")
        if self.store_retry_attempts < 1:
            raise ValueError("store_retry_attempts must be >= 1")
        if self.store_retry_min_seconds < 0:
            raise ValueError("store_retry_min_seconds must be >= 0")
        if self.store_retry_max_seconds < self.store_retry_min_seconds:
            raise ValueError(
                "store_retry_max_seconds must be >= store_retry_min_seconds"
            )
        if self.redis_url is not None and self.dynamodb_table is not None:
            raise ValueError("configure at most one of redis_url and dynamodb_table")
        return self

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build the default per-call breaker configuration."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            success_threshold=self.success_threshold,
            timeout_ms=self.timeout_ms,
        )

    def store_retry_policy(self) -> RetryBackoffPolicy:
        """Build the bounded retry policy for conflicting state writes."""
        return RetryBackoffPolicy(
            attempts=self.store_retry_attempts,
            min_seconds=self.store_retry_min_seconds,
            max_seconds=self.store_retry_max_seconds,
        )
