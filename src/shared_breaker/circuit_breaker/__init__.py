"""Framework-agnostic async circuit breaker over shared, versioned state.

This package implements the circuit breaker pattern from *Release It!* for callers
spread across processes or machines.

Key behavior notes:
  - Every caller of one ``breaker_id`` reads and writes a single ``BreakerState``
    record. Writes are compare-and-swap on the record ``version``; a conflicting
    caller reloads and recomputes its transition instead of overwriting.
  - No lock is held while the protected call runs. Only the admission decision
    and the recorded outcome are written.
  - Half-open probing is conservative by default: the OPEN → HALF_OPEN transition
    is persisted before the probe runs, so exactly one caller wins each probe
    window. The claim is a lease that expires after ``timeout_ms``.
  - If an excluded exception is raised, the call is treated as if it never
    happened: no counter changes and no listener state changes.
"""

from shared_breaker.circuit_breaker.breaker import CircuitBreaker
from shared_breaker.circuit_breaker.config import CircuitBreakerConfig
from shared_breaker.circuit_breaker.exceptions import (
    BreakerOpenError,
    BreakerStateNotFoundError,
    BreakerStoreContentionError,
    CircuitBreakerError,
    StoreUnavailableError,
    VersionConflictError,
)
from shared_breaker.circuit_breaker.metrics import (
    BreakerListener,
    LoggingBreakerListener,
    TransitionEvent,
)
from shared_breaker.circuit_breaker.state import BreakerState, CircuitState
from shared_breaker.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

__all__ = [
    "AbstractBreakerStorage",
    "BreakerListener",
    "BreakerOpenError",
    "BreakerState",
    "BreakerStateNotFoundError",
    "BreakerStoreContentionError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitState",
    "InMemoryBreakerStorage",
    "LoggingBreakerListener",
    "StoreUnavailableError",
    "TransitionEvent",
    "VersionConflictError",
]
