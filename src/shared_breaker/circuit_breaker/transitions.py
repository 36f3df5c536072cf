"""Pure state transition functions.

Every function takes an immutable ``BreakerState`` snapshot and returns a new one;
nothing here touches storage. Outcome functions are applied to a freshly loaded
snapshot, so they must tolerate state that moved since the call was admitted:

  - ``is_probe`` marks calls admitted while ``OPEN``/``HALF_OPEN``. Outcomes of calls
    admitted while ``CLOSED`` that land on an ``OPEN`` or ``HALF_OPEN`` record belong
    to an earlier episode and are ignored.
  - A probe outcome landing on an ``OPEN`` record whose window has not elapsed means
    another probe already re-opened the breaker; it is ignored too.
"""

from dataclasses import dataclass, replace
from datetime import datetime

from shared_breaker.circuit_breaker.config import CircuitBreakerConfig
from shared_breaker.circuit_breaker.state import BreakerState, CircuitState


@dataclass(frozen=True)
class Admission:
    """Outcome of an admission decision.

    Attributes:
        admitted: Whether the downstream call may proceed.
        state: Snapshot after the decision.
        is_probe: Whether the admitted call probes a tripped dependency.
        persist: Whether ``state`` must be written before the call proceeds.
        retry_after: Seconds until a rejected caller may try again.
        lease: Probe lease expiry claimed by this call under single-probe
            admission, or ``None``.
    """

    admitted: bool
    state: BreakerState
    is_probe: bool = False
    persist: bool = False
    retry_after: float = 0.0
    lease: datetime | None = None


def default_state(
    breaker_id: str, config: CircuitBreakerConfig, now: datetime
) -> BreakerState:
    """Build the lazily created ``CLOSED`` record for a new breaker."""
    return BreakerState(
        breaker_id=breaker_id,
        state=CircuitState.CLOSED,
        failure_count=0,
        success_count=0,
        failure_threshold=config.failure_threshold,
        success_threshold=config.success_threshold,
        next_attempt_at=now,
        timeout_ms=config.timeout_ms,
    )


def with_config(state: BreakerState, config: CircuitBreakerConfig) -> BreakerState:
    """Return ``state`` carrying the thresholds and timeout from ``config``."""
    if (
        state.failure_threshold == config.failure_threshold
        and state.success_threshold == config.success_threshold
        and state.timeout_ms == config.timeout_ms
    ):
        return state
    return replace(
        state,
        failure_threshold=config.failure_threshold,
        success_threshold=config.success_threshold,
        timeout_ms=config.timeout_ms,
    )


def retry_after_seconds(state: BreakerState, now: datetime) -> float:
    """Seconds left until ``next_attempt_at``, never negative."""
    return max((state.next_attempt_at - now).total_seconds(), 0.0)


def decide_admission(
    state: BreakerState,
    config: CircuitBreakerConfig,
    now: datetime,
    *,
    single_probe: bool,
) -> Admission:
    """Decide whether a call may proceed against ``state``."""
    state = with_config(state, config)

    if state.state == CircuitState.CLOSED:
        return Admission(admitted=True, state=state)

    if state.state == CircuitState.OPEN:
        if now < state.next_attempt_at:
            return Admission(
                admitted=False,
                state=state,
                retry_after=retry_after_seconds(state, now),
            )
        probing = replace(state, state=CircuitState.HALF_OPEN, success_count=0)
        if not single_probe:
            return Admission(admitted=True, state=probing, is_probe=True)
        lease = now + config.timeout
        return Admission(
            admitted=True,
            state=replace(probing, next_attempt_at=lease),
            is_probe=True,
            persist=True,
            lease=lease,
        )

    if not single_probe:
        return Admission(admitted=True, state=state, is_probe=True)
    if now < state.next_attempt_at:
        return Admission(
            admitted=False,
            state=state,
            retry_after=retry_after_seconds(state, now),
        )
    lease = now + config.timeout
    return Admission(
        admitted=True,
        state=replace(state, next_attempt_at=lease),
        is_probe=True,
        persist=True,
        lease=lease,
    )


def apply_success(
    state: BreakerState,
    config: CircuitBreakerConfig,
    now: datetime,
    *,
    is_probe: bool,
    lease: datetime | None = None,
) -> BreakerState:
    """Record a successful call on a fresh snapshot.

    ``lease`` is the probe lease the call claimed at admission. The lease is
    released only while the record still carries it; a newer lease belongs to
    another in-flight probe and is kept.
    """
    state = with_config(state, config)

    if state.state == CircuitState.CLOSED:
        return replace(state, failure_count=0)
    if not is_probe:
        return state
    if state.state == CircuitState.OPEN:
        if now < state.next_attempt_at:
            return state
        state = replace(state, state=CircuitState.HALF_OPEN, success_count=0)

    successes = state.success_count + 1
    if successes >= state.success_threshold:
        return _closed(state, now)
    if lease is not None and state.next_attempt_at != lease:
        return replace(state, success_count=successes)
    # Release the probe lease so the next caller can probe immediately.
    return replace(state, success_count=successes, next_attempt_at=now)


def apply_failure(
    state: BreakerState,
    config: CircuitBreakerConfig,
    now: datetime,
    *,
    is_probe: bool,
) -> BreakerState:
    """Record a failed call on a fresh snapshot."""
    state = with_config(state, config)

    if state.state == CircuitState.CLOSED:
        failures = state.failure_count + 1
        if failures >= state.failure_threshold:
            return _opened(state, failures, now, config)
        return replace(state, failure_count=failures)
    if not is_probe:
        return state
    if state.state == CircuitState.OPEN and now < state.next_attempt_at:
        return state
    return _opened(state, state.failure_count + 1, now, config)


def _opened(
    state: BreakerState,
    failures: int,
    now: datetime,
    config: CircuitBreakerConfig,
) -> BreakerState:
    return replace(
        state,
        state=CircuitState.OPEN,
        failure_count=failures,
        success_count=0,
        next_attempt_at=now + config.timeout,
    )


def _closed(state: BreakerState, now: datetime) -> BreakerState:
    return replace(
        state,
        state=CircuitState.CLOSED,
        failure_count=0,
        success_count=0,
        next_attempt_at=now,
    )
