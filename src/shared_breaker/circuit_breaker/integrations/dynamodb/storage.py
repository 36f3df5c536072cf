"""DynamoDB-backed breaker storage.

Each breaker is one item keyed by ``id``. Writes are conditional ``PutItem`` calls:
inserts require ``attribute_not_exists(id)`` and updates require the stored
``version`` to equal the version read by the caller. A failed condition means
another writer got there first and surfaces as ``VersionConflictError``.
"""

from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from shared_breaker.circuit_breaker.exceptions import (
    StoreUnavailableError,
    VersionConflictError,
)
from shared_breaker.circuit_breaker.state import BreakerState
from shared_breaker.circuit_breaker.storage import (
    AbstractBreakerStorage,
    next_version,
)

KEY_ATTRIBUTE = "id"
_CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
_NUMERIC_ATTRIBUTES = frozenset(
    {
        "failure_count",
        "success_count",
        "failure_threshold",
        "success_threshold",
        "timeout_ms",
        "version",
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_item(breaker_id: str, state: BreakerState) -> dict[str, Any]:
    item: dict[str, Any] = {KEY_ATTRIBUTE: breaker_id}
    for name, value in state.to_record().items():
        item[name] = int(value) if name in _NUMERIC_ATTRIBUTES else value
    return item


def _from_item(breaker_id: str, item: Mapping[str, Any]) -> BreakerState:
    # The resource layer returns numbers as Decimal.
    record = {
        name: str(value) for name, value in item.items() if name != KEY_ATTRIBUTE
    }
    return BreakerState.from_record(breaker_id, record)


class DynamoDBBreakerStorage(AbstractBreakerStorage):
    """Breaker storage backed by one DynamoDB item per breaker."""

    def __init__(self, table: Any) -> None:
        """Create a storage adapter over an ``aioboto3`` DynamoDB ``Table``.

        Args:
            table: Table resource with a string partition key named ``id``. The
                owning resource context stays with the caller.
        """
        self._table = table

    async def _get(self, breaker_id: str) -> BreakerState | None:
        response = await self._table.get_item(
            Key={KEY_ATTRIBUTE: breaker_id},
            ConsistentRead=True,
        )
        item = response.get("Item")
        if not item:
            return None
        return _from_item(breaker_id, item)

    async def load(self, breaker_id: str) -> BreakerState | None:
        """Read the breaker item with a strongly consistent read."""
        try:
            return await self._get(breaker_id)
        except (BotoCoreError, ClientError) as exc:
            raise StoreUnavailableError(breaker_id) from exc

    async def compare_and_swap(
        self,
        breaker_id: str,
        expected_version: int | None,
        new_state: BreakerState,
    ) -> BreakerState:
        """Write ``new_state`` with a conditional put fenced on ``version``."""
        try:
            stored = await self._get(breaker_id)
            version = next_version(breaker_id, stored, expected_version)
            updated = replace(
                new_state,
                breaker_id=breaker_id,
                version=version,
                updated_at=_utcnow(),
            )
            if expected_version is None:
                condition: dict[str, Any] = {
                    "ConditionExpression": "attribute_not_exists(#id)",
                    "ExpressionAttributeNames": {"#id": KEY_ATTRIBUTE},
                }
            else:
                condition = {
                    "ConditionExpression": "#version = :expected",
                    "ExpressionAttributeNames": {"#version": "version"},
                    "ExpressionAttributeValues": {":expected": expected_version},
                }
            await self._table.put_item(Item=_to_item(breaker_id, updated), **condition)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == _CONDITIONAL_CHECK_FAILED:
                raise VersionConflictError(breaker_id, expected_version) from exc
            raise StoreUnavailableError(breaker_id) from exc
        except BotoCoreError as exc:
            raise StoreUnavailableError(breaker_id) from exc
        return updated
