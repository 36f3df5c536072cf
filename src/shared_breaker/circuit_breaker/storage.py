"""State storage for circuit breakers.

Storage is intentionally decoupled from breaker logic. Every write is a
compare-and-swap against the record version read by the caller, which is the only
serialization primitive shared between processes. Custom backends (for example
Redis, see ``integrations.redis``) implement the same interface for multi-process
coordination.
"""

import asyncio
import sys
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime

from shared_breaker.circuit_breaker.exceptions import (
    BreakerStateNotFoundError,
    VersionConflictError,
)
from shared_breaker.circuit_breaker.state import BreakerState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AbstractBreakerStorage(ABC):
    """Abstract breaker storage interface."""

    @abstractmethod
    async def load(self, breaker_id: str) -> BreakerState | None:
        """Return the stored record for ``breaker_id`` or ``None`` if absent.

        Raises:
            StoreUnavailableError: When the backend cannot be reached.
        """

    @abstractmethod
    async def compare_and_swap(
        self,
        breaker_id: str,
        expected_version: int | None,
        new_state: BreakerState,
    ) -> BreakerState:
        """Atomically replace the record if its version is still ``expected_version``.

        ``expected_version=None`` inserts only when no record exists. The stored
        record gets ``version = expected_version + 1`` (``1`` on insert) and a fresh
        ``updated_at``; it is returned to the caller.

        Raises:
            VersionConflictError: When another writer got there first.
            BreakerStateNotFoundError: When updating a record that does not exist.
            StoreUnavailableError: When the backend cannot be reached.
        """


def next_version(
    breaker_id: str,
    stored: BreakerState | None,
    expected_version: int | None,
) -> int:
    """Validate a conditional write against ``stored`` and return the new version."""
    if expected_version is None:
        if stored is not None:
            raise VersionConflictError(breaker_id, expected_version)
        return 1
    if stored is None:
        raise BreakerStateNotFoundError(breaker_id)
    if stored.version != expected_version:
        raise VersionConflictError(breaker_id, expected_version)
    return expected_version + 1


class InMemoryBreakerStorage(AbstractBreakerStorage):
    """In-memory storage with per-breaker cooperative + optional thread locks."""

    def __init__(self) -> None:
        """Initialize in-memory record and lock registries."""
        self._records: dict[str, BreakerState] = {}
        self._async_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._thread_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())

    @asynccontextmanager
    async def _locked(self, breaker_id: str) -> AsyncIterator[None]:
        async_lock = self._async_locks[breaker_id]
        if self._gil_enabled:
            await async_lock.acquire()
            try:
                yield
            finally:
                async_lock.release()
            return

        thread_lock = self._thread_locks[breaker_id]
        thread_lock.acquire()
        try:
            await async_lock.acquire()
        except Exception:
            thread_lock.release()
            raise
        try:
            yield
        finally:
            async_lock.release()
            thread_lock.release()

    async def load(self, breaker_id: str) -> BreakerState | None:
        """Return the stored record, or ``None`` when the breaker is new."""
        async with self._locked(breaker_id):
            return self._records.get(breaker_id)

    async def compare_and_swap(
        self,
        breaker_id: str,
        expected_version: int | None,
        new_state: BreakerState,
    ) -> BreakerState:
        """Store ``new_state`` when the current version matches."""
        async with self._locked(breaker_id):
            version = next_version(
                breaker_id, self._records.get(breaker_id), expected_version
            )
            stored = replace(
                new_state,
                breaker_id=breaker_id,
                version=version,
                updated_at=_utcnow(),
            )
            self._records[breaker_id] = stored
            return stored
