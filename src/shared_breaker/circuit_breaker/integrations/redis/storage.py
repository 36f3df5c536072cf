"""Redis-backed breaker storage for multi-process coordination.

Each breaker is one hash at ``{key_prefix}{breaker_id}``. Conditional writes use
optimistic ``WATCH`` + ``MULTI/EXEC`` transactions: the record is watched, its
version checked, and the new record queued; ``EXEC`` aborts with ``WatchError`` when
another client touched the key in between.
"""

from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from shared_breaker.circuit_breaker.exceptions import (
    StoreUnavailableError,
    VersionConflictError,
)
from shared_breaker.circuit_breaker.state import BreakerState
from shared_breaker.circuit_breaker.storage import (
    AbstractBreakerStorage,
    next_version,
)

DEFAULT_KEY_PREFIX = "circuit_breaker:"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _decode(raw: Mapping[bytes | str, bytes | str]) -> dict[str, str]:
    decoded: dict[str, str] = {}
    for key, value in raw.items():
        name = key.decode() if isinstance(key, bytes) else key
        decoded[name] = value.decode() if isinstance(value, bytes) else value
    return decoded


class RedisBreakerStorage(AbstractBreakerStorage):
    """Breaker storage backed by one Redis hash per breaker."""

    def __init__(self, client: Redis, *, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        """Create a storage adapter over an existing async Redis client.

        Args:
            client: Shared ``redis.asyncio`` client. Connection lifecycle stays
                with the caller.
            key_prefix: Prefix prepended to every breaker id.
        """
        self._client = client
        self._key_prefix = key_prefix

    def _key(self, breaker_id: str) -> str:
        return f"{self._key_prefix}{breaker_id}"

    def _parse(
        self, breaker_id: str, raw: Mapping[bytes | str, bytes | str]
    ) -> BreakerState | None:
        if not raw:
            return None
        return BreakerState.from_record(breaker_id, _decode(raw))

    async def load(self, breaker_id: str) -> BreakerState | None:
        """Read the breaker hash, returning ``None`` when it does not exist."""
        try:
            raw = await self._client.hgetall(self._key(breaker_id))
        except RedisError as exc:
            raise StoreUnavailableError(breaker_id) from exc
        return self._parse(breaker_id, raw)

    async def compare_and_swap(
        self,
        breaker_id: str,
        expected_version: int | None,
        new_state: BreakerState,
    ) -> BreakerState:
        """Write ``new_state`` inside a watched transaction."""
        key = self._key(breaker_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                stored = self._parse(breaker_id, await pipe.hgetall(key))
                version = next_version(breaker_id, stored, expected_version)
                updated = replace(
                    new_state,
                    breaker_id=breaker_id,
                    version=version,
                    updated_at=_utcnow(),
                )
                pipe.multi()
                pipe.hset(key, mapping=updated.to_record())
                await pipe.execute()
        except WatchError as exc:
            raise VersionConflictError(breaker_id, expected_version) from exc
        except RedisError as exc:
            raise StoreUnavailableError(breaker_id) from exc
        return updated
