from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from shared_breaker.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    LoggingBreakerListener,
    TransitionEvent,
)
from tests.shared_breaker.support.fakes import FakeClock, FakeLogger

pytestmark = pytest.mark.asyncio

_NOW = datetime(2021, 6, 1, 12, 0, tzinfo=UTC)


def _event(new_state: CircuitState) -> TransitionEvent:
    return TransitionEvent(
        breaker_id="svc",
        previous_state=CircuitState.CLOSED,
        new_state=new_state,
        failure_count=5,
        success_count=0,
        timestamp=_NOW,
    )


async def test_trip_is_logged_as_warning_with_counters(
    fake_logger: FakeLogger,
) -> None:
    listener = LoggingBreakerListener(fake_logger)

    await listener.on_state_change(_event(CircuitState.OPEN))

    assert fake_logger.calls == [
        (
            "warning",
            "circuit_breaker.state_changed",
            {
                "breaker_id": "svc",
                "previous_state": "closed",
                "new_state": "open",
                "failure_count": 5,
                "success_count": 0,
                "timestamp": "2021-06-01T12:00:00+00:00",
            },
        )
    ]


async def test_recovery_transitions_are_logged_as_info(
    fake_logger: FakeLogger,
) -> None:
    listener = LoggingBreakerListener(fake_logger)

    await listener.on_state_change(_event(CircuitState.HALF_OPEN))

    assert fake_logger.calls[0][0] == "info"


async def test_rejections_and_failures_are_logged(fake_logger: FakeLogger) -> None:
    listener = LoggingBreakerListener(fake_logger)

    await listener.on_call_rejected("svc", 1.5)
    await listener.on_call_failed("svc", TimeoutError("slow"), 0.2)
    await listener.on_call_succeeded("svc", 0.1)

    assert fake_logger.events == [
        "circuit_breaker.call_rejected",
        "circuit_breaker.call_failed",
    ]
    assert fake_logger.calls[1][2]["error_type"] == "TimeoutError"


async def test_stdlib_logger_receives_fields_as_extra(
    caplog: pytest.LogCaptureFixture,
) -> None:
    listener = LoggingBreakerListener(logging.getLogger("breaker.test"))

    with caplog.at_level(logging.INFO, logger="breaker.test"):
        await listener.on_state_change(_event(CircuitState.OPEN))

    (record,) = caplog.records
    assert record.getMessage() == "circuit_breaker.state_changed"
    assert record.levelno == logging.WARNING
    assert record.__dict__["new_state"] == "open"


async def test_breaker_emits_logged_transition(
    fake_logger: FakeLogger, clock: FakeClock
) -> None:
    breaker = CircuitBreaker(
        config=CircuitBreakerConfig(failure_threshold=1),
        listeners=[LoggingBreakerListener(fake_logger)],
    )

    async def _fail() -> None:
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        await breaker.call("svc", _fail)

    assert "circuit_breaker.state_changed" in fake_logger.events
