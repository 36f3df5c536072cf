from __future__ import annotations

from typing import Any, cast

import pytest
from pydantic import ValidationError

from shared_breaker.settings import BreakerSettings


def _build_settings(**overrides: object) -> BreakerSettings:
    values: dict[str, object] = {"breaker_id": "billing-api"}
    values.update(overrides)
    return BreakerSettings(**cast(Any, values))


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AWS_LAMBDA_FUNCTION_NAME", raising=False)
    monkeypatch.delenv("CIRCUIT_BREAKER_BREAKER_ID", raising=False)
    monkeypatch.delenv("CIRCUIT_BREAKER_REDIS_URL", raising=False)
    monkeypatch.delenv("CIRCUITBREAKER_TABLE", raising=False)
    monkeypatch.delenv("CIRCUIT_BREAKER_DYNAMODB_TABLE", raising=False)


def test_defaults_match_breaker_config_defaults() -> None:
    settings = _build_settings()
    config = settings.breaker_config()

    assert config.failure_threshold == 5
    assert config.success_threshold == 2
    assert config.timeout_ms == 5000
    assert settings.fail_open is False
    assert settings.single_probe is True
    assert settings.redis_url is None


def test_store_retry_policy_follows_settings() -> None:
    policy = _build_settings(
        store_retry_attempts=4,
        store_retry_min_seconds=0.0,
        store_retry_max_seconds=0.5,
    ).store_retry_policy()

    assert policy.attempts == 4
    assert policy.min_seconds == 0.0
    assert policy.max_seconds == 0.5


def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIRCUIT_BREAKER_BREAKER_ID", "search")
    monkeypatch.setenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", "2")
    monkeypatch.setenv("CIRCUIT_BREAKER_TIMEOUT_MS", "1000")
    monkeypatch.setenv("CIRCUIT_BREAKER_FAIL_OPEN", "true")

    settings = BreakerSettings()

    assert settings.breaker_id == "search"
    assert settings.failure_threshold == 2
    assert settings.timeout_ms == 1000
    assert settings.fail_open is True


def test_breaker_id_falls_back_to_function_name(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "orders-fn")

    assert BreakerSettings().breaker_id == "orders-fn"


def test_breaker_id_is_required() -> None:
    with pytest.raises(ValidationError):
        BreakerSettings()


def test_breaker_id_is_stripped_and_non_empty() -> None:
    assert _build_settings(breaker_id="  svc  ").breaker_id == "svc"
    with pytest.raises(ValidationError):
        _build_settings(breaker_id="   ")


def test_blank_redis_url_is_unset() -> None:
    assert _build_settings(redis_url=" ").redis_url is None


def test_log_level_is_normalized_and_validated() -> None:
    assert _build_settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        _build_settings(log_level="TRACE")


@pytest.mark.parametrize(
    "overrides",
    [
        {"failure_threshold": 0},
        {"success_threshold": 0},
        {"timeout_ms": 0},
        {"store_retry_attempts": 0},
        {"store_retry_min_seconds": -1.0},
        {"store_retry_min_seconds": 1.0, "store_retry_max_seconds": 0.5},
        {"redis_url": "redis://cache:6379/0", "dynamodb_table": "breakers"},
    ],
)
def test_rejects_invalid_values(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        _build_settings(**overrides)


def test_dynamodb_table_reads_legacy_table_variable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CIRCUITBREAKER_TABLE", "breakers")

    settings = _build_settings()

    assert settings.dynamodb_table == "breakers"
    assert settings.dynamodb_endpoint_url is None


def test_blank_dynamodb_settings_are_unset() -> None:
    settings = _build_settings(dynamodb_table="", dynamodb_region=" ")

    assert settings.dynamodb_table is None
    assert settings.dynamodb_region is None
