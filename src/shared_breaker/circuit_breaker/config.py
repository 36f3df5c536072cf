"""Per-breaker configuration."""

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED`` before
            opening.
        success_threshold: Consecutive probe successes required while
            ``HALF_OPEN`` before closing.
        timeout_ms: Milliseconds to wait while ``OPEN`` before allowing a probe.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_ms: int = 5000
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.timeout_ms < 1:
            raise ValueError("timeout_ms must be >= 1")

    @property
    def timeout(self) -> timedelta:
        """Return the open window as a ``timedelta``."""
        return timedelta(milliseconds=self.timeout_ms)
