"""Circuit breaker state primitives."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerState:
    """Versioned record shared by every caller of one breaker identity.

    Attributes:
        breaker_id: Identity of the protected downstream dependency.
        state: Current health classification.
        failure_count: Consecutive failures observed.
        success_count: Consecutive successes observed while ``HALF_OPEN``.
        failure_threshold: Failures tolerated before tripping to ``OPEN``.
        success_threshold: Probe successes required before closing.
        next_attempt_at: While ``OPEN``, the earliest time a probe is allowed.
            While ``HALF_OPEN`` with single-probe admission, the probe lease expiry.
        timeout_ms: Milliseconds added to now when tripping to ``OPEN``.
        version: Optimistic concurrency token. ``0`` means never persisted.
        updated_at: Timestamp of the last persisted write, if any.
    """

    breaker_id: str
    state: CircuitState
    failure_count: int
    success_count: int
    failure_threshold: int
    success_threshold: int
    next_attempt_at: datetime
    timeout_ms: int
    version: int = 0
    updated_at: datetime | None = None

    @property
    def persisted(self) -> bool:
        """Return true when the record has been written to a store."""
        return self.version > 0

    def to_record(self) -> dict[str, str]:
        """Serialize into a flat string mapping for hash-based stores."""
        record = {
            "state": self.state.value,
            "failure_count": str(self.failure_count),
            "success_count": str(self.success_count),
            "failure_threshold": str(self.failure_threshold),
            "success_threshold": str(self.success_threshold),
            "next_attempt_at": self.next_attempt_at.isoformat(),
            "timeout_ms": str(self.timeout_ms),
            "version": str(self.version),
        }
        if self.updated_at is not None:
            record["updated_at"] = self.updated_at.isoformat()
        return record

    @classmethod
    def from_record(
        cls, breaker_id: str, record: Mapping[str, str]
    ) -> "BreakerState":
        """Parse a mapping produced by ``to_record``."""
        updated_at = record.get("updated_at")
        return cls(
            breaker_id=breaker_id,
            state=CircuitState(record["state"]),
            failure_count=int(record["failure_count"]),
            success_count=int(record["success_count"]),
            failure_threshold=int(record["failure_threshold"]),
            success_threshold=int(record["success_threshold"]),
            next_attempt_at=_parse_timestamp(record["next_attempt_at"]),
            timeout_ms=int(record["timeout_ms"]),
            version=int(record["version"]),
            updated_at=None if not updated_at else _parse_timestamp(updated_at),
        )


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
