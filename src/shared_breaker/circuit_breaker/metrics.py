"""Observability hooks for circuit breakers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from shared_breaker.circuit_breaker.state import BreakerState, CircuitState
from shared_breaker.logging import (
    StdlibLogger,
    StructuredLogger,
    log_info,
    log_warning,
)


@dataclass(frozen=True)
class TransitionEvent:
    """One breaker state change, emitted after it has been decided.

    Attributes:
        breaker_id: Identity of the breaker that changed state.
        previous_state: State before the transition.
        new_state: State after the transition.
        failure_count: Failure counter after the transition.
        success_count: Success counter after the transition.
        timestamp: Decision time.
    """

    breaker_id: str
    previous_state: CircuitState
    new_state: CircuitState
    failure_count: int
    success_count: int
    timestamp: datetime

    @classmethod
    def between(
        cls, previous: BreakerState, current: BreakerState, timestamp: datetime
    ) -> "TransitionEvent":
        """Build an event describing ``previous`` → ``current``."""
        return cls(
            breaker_id=current.breaker_id,
            previous_state=previous.state,
            new_state=current.state,
            failure_count=current.failure_count,
            success_count=current.success_count,
            timestamp=timestamp,
        )


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Events are purely observational. Exceptions raised by listeners are
        ignored and never affect the protected call.
    """

    async def on_state_change(self, event: TransitionEvent) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, breaker_id: str, retry_after: float) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, breaker_id: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(
        self, breaker_id: str, exc: Exception, elapsed: float
    ) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener(BreakerListener):
    """Listener that writes breaker events as structured log lines."""

    def __init__(self, logger: StructuredLogger | StdlibLogger) -> None:
        """Create a listener logging through ``logger``.

        Args:
            logger: structlog or stdlib logger receiving the events.
        """
        self._logger = logger

    async def on_state_change(self, event: TransitionEvent) -> None:
        """Log one transition with its counters."""
        fields = {
            "breaker_id": event.breaker_id,
            "previous_state": event.previous_state.value,
            "new_state": event.new_state.value,
            "failure_count": event.failure_count,
            "success_count": event.success_count,
            "timestamp": event.timestamp.isoformat(),
        }
        if event.new_state == CircuitState.OPEN:
            log_warning(self._logger, "circuit_breaker.state_changed", **fields)
            return
        log_info(self._logger, "circuit_breaker.state_changed", **fields)

    async def on_call_rejected(self, breaker_id: str, retry_after: float) -> None:
        """Log a fast-failed call."""
        log_info(
            self._logger,
            "circuit_breaker.call_rejected",
            breaker_id=breaker_id,
            retry_after=retry_after,
        )

    async def on_call_succeeded(self, breaker_id: str, elapsed: float) -> None:
        """No-op for this listener."""
        _ = (breaker_id, elapsed)

    async def on_call_failed(
        self, breaker_id: str, exc: Exception, elapsed: float
    ) -> None:
        """Log the failure class, never its payload."""
        log_info(
            self._logger,
            "circuit_breaker.call_failed",
            breaker_id=breaker_id,
            error_type=exc.__class__.__name__,
            elapsed=elapsed,
        )
