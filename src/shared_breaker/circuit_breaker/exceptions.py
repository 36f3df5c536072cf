"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - The shared state store being contended or unreachable.

Downstream exceptions are never wrapped; they propagate unchanged.
"""

from shared_breaker.errors import TransientError


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class BreakerOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_id: Identity of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
    """

    def __init__(self, breaker_id: str, retry_after: float) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_id: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
        """
        self.breaker_id = breaker_id
        self.retry_after = retry_after
        super().__init__(f"circuit_open: {breaker_id} retry_after={retry_after:g}s")


class VersionConflictError(CircuitBreakerError):
    """Raised by storage when a conditional write observes a newer version."""

    def __init__(self, breaker_id: str, expected_version: int | None) -> None:
        self.breaker_id = breaker_id
        self.expected_version = expected_version
        super().__init__(
            f"version_conflict: {breaker_id} expected_version={expected_version}"
        )


class BreakerStateNotFoundError(CircuitBreakerError):
    """Raised by storage when a conditional update targets a missing record."""

    def __init__(self, breaker_id: str) -> None:
        self.breaker_id = breaker_id
        super().__init__(f"breaker_state_not_found: {breaker_id}")


class BreakerStoreContentionError(CircuitBreakerError):
    """Raised when conditional writes keep conflicting after bounded retries.

    Attributes:
        breaker_id: Identity of the contended breaker.
        attempts: Load-decide-write cycles attempted.
        result: Downstream result when the call itself succeeded, else ``None``.
    """

    def __init__(
        self, breaker_id: str, attempts: int, *, result: object = None
    ) -> None:
        self.breaker_id = breaker_id
        self.attempts = attempts
        self.result = result
        super().__init__(f"store_contention: {breaker_id} attempts={attempts}")


class StoreUnavailableError(CircuitBreakerError, TransientError):
    """Raised when the breaker state store cannot be reached.

    Attributes:
        breaker_id: Identity of the breaker whose state was requested.
        result: Downstream result when the call itself succeeded, else ``None``.
    """

    def __init__(self, breaker_id: str, *, result: object = None) -> None:
        self.breaker_id = breaker_id
        self.result = result
        super().__init__(f"store_unavailable: {breaker_id}")
