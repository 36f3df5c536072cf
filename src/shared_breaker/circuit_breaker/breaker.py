"""Core circuit breaker implementation."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from functools import partial
from datetime import UTC, datetime
from typing import Any, ParamSpec, TypeVar

from tenacity import RetryCallState, retry_if_exception_type

from shared_breaker.circuit_breaker import transitions
from shared_breaker.circuit_breaker.config import CircuitBreakerConfig
from shared_breaker.circuit_breaker.exceptions import (
    BreakerOpenError,
    BreakerStateNotFoundError,
    BreakerStoreContentionError,
    StoreUnavailableError,
    VersionConflictError,
)
from shared_breaker.circuit_breaker.metrics import BreakerListener, TransitionEvent
from shared_breaker.circuit_breaker.state import BreakerState
from shared_breaker.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)
from shared_breaker.executor import RequestExecutor
from shared_breaker.logging import log_exception, log_info, log_warning
from shared_breaker.retry import (
    DEFAULT_STORE_RETRY_POLICY,
    RetryBackoffPolicy,
    build_exponential_jitter_retrying,
)

T = TypeVar("T")
P = ParamSpec("P")

_logger = logging.getLogger(__name__)

_Outcome = Callable[..., BreakerState]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _expected_version(state: BreakerState) -> int | None:
    return state.version if state.persisted else None


def _log_store_conflict(retry_state: RetryCallState) -> None:
    log_info(
        _logger,
        "circuit_breaker.store_conflict",
        attempt=retry_state.attempt_number,
    )


class CircuitBreaker:
    """Guard outbound calls with state shared through a conditional-write store.

    One ``CircuitBreaker`` instance can protect any number of dependencies; each
    ``breaker_id`` names one shared record. The instance itself holds no breaker
    state, so every process pointing at the same storage observes the same circuit.
    """

    def __init__(
        self,
        *,
        storage: AbstractBreakerStorage | None = None,
        executor: RequestExecutor[Any, Any] | None = None,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        single_probe: bool = True,
        fail_open: bool = False,
        store_retry_policy: RetryBackoffPolicy | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            storage: State storage backend. Defaults to in-memory storage.
            executor: Request executor used by ``execute``.
            config: Default breaker configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
            single_probe: Admit one probe at a time while recovering, fenced by a
                conditional write. When false every caller probes concurrently.
            fail_open: Run calls unguarded when the store is unreachable instead
                of rejecting them.
            store_retry_policy: Bounded retry applied to conflicting writes.
        """
        self.config = CircuitBreakerConfig() if config is None else config
        self._storage = InMemoryBreakerStorage() if storage is None else storage
        self._executor = executor
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._single_probe = single_probe
        self._fail_open = fail_open
        self._store_retry_policy = (
            DEFAULT_STORE_RETRY_POLICY
            if store_retry_policy is None
            else store_retry_policy
        )

    async def _emit_state_change(self, event: TransitionEvent) -> None:
        for listener in self._listeners:
            try:
                await listener.on_state_change(event)
            except Exception:
                continue

    async def _emit_call_rejected(self, breaker_id: str, retry_after: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(breaker_id, retry_after)
            except Exception:
                continue

    async def _emit_call_succeeded(self, breaker_id: str, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_succeeded(breaker_id, elapsed)
            except Exception:
                continue

    async def _emit_call_failed(
        self, breaker_id: str, exc: Exception, elapsed: float
    ) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_failed(breaker_id, exc, elapsed)
            except Exception:
                continue

    async def execute(
        self,
        breaker_id: str,
        request: Any,
        config: CircuitBreakerConfig | None = None,
    ) -> Any:
        """Send ``request`` through the configured executor under protection.

        Args:
            breaker_id: Identity of the protected dependency.
            request: Opaque request descriptor passed to the executor.
            config: Configuration for this call. It replaces the breaker's
                default config as a whole; build it with
                ``dataclasses.replace(breaker.config, ...)`` to change only some
                fields.

        Returns:
            The executor's response.

        Raises:
            BreakerOpenError: When the circuit is open and the call is rejected.
            BreakerStoreContentionError: When state writes keep conflicting.
            StoreUnavailableError: When the state store cannot be reached.
            Exception: The executor's original exception when the call fails.
        """
        if self._executor is None:
            raise RuntimeError("execute requires a request executor")
        resolved = self.config if config is None else config
        return await self._guard(breaker_id, resolved, self._executor.invoke, request)

    async def call(
        self,
        breaker_id: str,
        func: Callable[P, Awaitable[T]],
        /,
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            breaker_id: Identity of the protected dependency.
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            BreakerOpenError: When the circuit is open and the call is rejected.
            Exception: The original exception from ``func`` when it is attempted
                and fails with an expected exception type.
        """
        return await self._guard(breaker_id, self.config, func, *args, **kwargs)

    async def _guard(
        self,
        breaker_id: str,
        config: CircuitBreakerConfig,
        func: Callable[..., Awaitable[T]],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> T:
        if not breaker_id:
            raise ValueError("breaker_id must be non-empty")

        task = asyncio.current_task()
        if task is not None:
            callable_name = getattr(func, "__qualname__", None)
            if callable_name is None:
                callable_name = getattr(func, "__name__", None)
            if callable_name is None:
                callable_name = func.__class__.__qualname__
            task.set_name(f"circuit_breaker:{breaker_id}:{str(callable_name)}")

        try:
            admission = await self._retrying_store_cycle(
                breaker_id, self._admit_once, breaker_id, config
            )
        except StoreUnavailableError:
            if not self._fail_open:
                raise
            log_warning(
                _logger,
                "circuit_breaker.store_unavailable_fail_open",
                breaker_id=breaker_id,
            )
            return await func(*args, **kwargs)

        if not admission.admitted:
            await self._emit_call_rejected(breaker_id, admission.retry_after)
            raise BreakerOpenError(breaker_id, retry_after=admission.retry_after)

        start = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except config.excluded_exceptions:
            raise
        except config.expected_exceptions as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            await self._emit_call_failed(breaker_id, exc, elapsed)
            try:
                await self._record(
                    breaker_id,
                    config,
                    transitions.apply_failure,
                    is_probe=admission.is_probe,
                )
            except (BreakerStoreContentionError, StoreUnavailableError):
                log_exception(
                    _logger,
                    "circuit_breaker.failure_not_recorded",
                    breaker_id=breaker_id,
                )
            raise
        else:
            elapsed = max(time.monotonic() - start, 0.0)
            try:
                await self._record(
                    breaker_id,
                    config,
                    partial(transitions.apply_success, lease=admission.lease),
                    is_probe=admission.is_probe,
                )
            except BreakerStoreContentionError as exc:
                raise BreakerStoreContentionError(
                    breaker_id, exc.attempts, result=result
                ) from exc
            except StoreUnavailableError as exc:
                raise StoreUnavailableError(breaker_id, result=result) from exc
            await self._emit_call_succeeded(breaker_id, elapsed)
            return result

    async def _retrying_store_cycle(
        self,
        breaker_id: str,
        cycle: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        """Run one load-decide-write cycle, restarting it on version conflicts."""
        retrying = build_exponential_jitter_retrying(
            retry=retry_if_exception_type(
                (VersionConflictError, BreakerStateNotFoundError)
            ),
            policy=self._store_retry_policy,
            before_sleep=_log_store_conflict,
        )
        try:
            return await retrying(cycle, *args)
        except (VersionConflictError, BreakerStateNotFoundError) as exc:
            attempts = retrying.statistics.get(
                "attempt_number", self._store_retry_policy.attempts or 0
            )
            raise BreakerStoreContentionError(breaker_id, attempts) from exc

    async def _admit_once(
        self, breaker_id: str, config: CircuitBreakerConfig
    ) -> transitions.Admission:
        loaded = await self._storage.load(breaker_id)
        now = _utcnow()
        current = (
            transitions.default_state(breaker_id, config, now)
            if loaded is None
            else loaded
        )
        admission = transitions.decide_admission(
            current, config, now, single_probe=self._single_probe
        )
        if admission.persist:
            stored = await self._storage.compare_and_swap(
                breaker_id, _expected_version(current), admission.state
            )
            admission = replace(
                admission, state=stored, lease=stored.next_attempt_at
            )
        if admission.persist and admission.state.state != current.state:
            await self._emit_state_change(
                TransitionEvent.between(current, admission.state, now)
            )
        return admission

    async def _record(
        self,
        breaker_id: str,
        config: CircuitBreakerConfig,
        outcome: _Outcome,
        *,
        is_probe: bool,
    ) -> None:
        await self._retrying_store_cycle(
            breaker_id, self._record_once, breaker_id, config, outcome, is_probe
        )

    async def _record_once(
        self,
        breaker_id: str,
        config: CircuitBreakerConfig,
        outcome: _Outcome,
        is_probe: bool,
    ) -> None:
        loaded = await self._storage.load(breaker_id)
        now = _utcnow()
        current = (
            transitions.default_state(breaker_id, config, now)
            if loaded is None
            else loaded
        )
        updated = outcome(current, config, now, is_probe=is_probe)
        if updated == current and current.persisted:
            return
        stored = await self._storage.compare_and_swap(
            breaker_id, _expected_version(current), updated
        )
        if stored.state != current.state:
            await self._emit_state_change(TransitionEvent.between(current, stored, now))
