"""Wire a ready-to-use circuit breaker from ``BreakerSettings``."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aioboto3
import httpx
import structlog
from redis.asyncio import Redis

from shared_breaker.circuit_breaker import (
    AbstractBreakerStorage,
    BreakerListener,
    CircuitBreaker,
    InMemoryBreakerStorage,
    LoggingBreakerListener,
)
from shared_breaker.circuit_breaker.integrations.dynamodb.storage import (
    DynamoDBBreakerStorage,
)
from shared_breaker.circuit_breaker.integrations.redis.storage import (
    RedisBreakerStorage,
)
from shared_breaker.executor import HttpxRequestExecutor
from shared_breaker.logging import StdlibLogger, StructuredLogger, configure_structlog
from shared_breaker.settings import BreakerSettings


def build_storage(
    settings: BreakerSettings,
    *,
    redis_client: Redis | None = None,
    dynamodb_table: Any | None = None,
) -> AbstractBreakerStorage:
    """Select the storage backend for the supplied client.

    A DynamoDB table wins over a Redis client; with neither, state is kept in
    process memory.
    """
    if dynamodb_table is not None:
        return DynamoDBBreakerStorage(dynamodb_table)
    if redis_client is not None:
        return RedisBreakerStorage(redis_client, key_prefix=settings.redis_key_prefix)
    return InMemoryBreakerStorage()


def build_circuit_breaker(
    settings: BreakerSettings,
    *,
    http_client: httpx.AsyncClient,
    storage: AbstractBreakerStorage | None = None,
    logger: StructuredLogger | StdlibLogger | None = None,
    listeners: Sequence[BreakerListener] = (),
) -> CircuitBreaker:
    """Build a breaker using HTTP execution and settings-derived policies.

    Args:
        settings: Validated breaker settings.
        http_client: Shared HTTP client used by the request executor.
        storage: Shared state storage. Defaults to in-memory storage.
        logger: Logger receiving transition events. Defaults to structlog.
        listeners: Additional listeners appended after the logging listener.
    """
    resolved_logger = (
        structlog.stdlib.get_logger("shared_breaker") if logger is None else logger
    )
    return CircuitBreaker(
        storage=build_storage(settings) if storage is None else storage,
        executor=HttpxRequestExecutor(client=http_client),
        config=settings.breaker_config(),
        listeners=[LoggingBreakerListener(resolved_logger), *listeners],
        single_probe=settings.single_probe,
        fail_open=settings.fail_open,
        store_retry_policy=settings.store_retry_policy(),
    )


@asynccontextmanager
async def _http_client(
    client: httpx.AsyncClient | None,
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient() as owned:
        yield owned


@asynccontextmanager
async def _dynamodb_table(settings: BreakerSettings) -> AsyncIterator[Any]:
    options: dict[str, Any] = {}
    if settings.dynamodb_endpoint_url is not None:
        options["endpoint_url"] = settings.dynamodb_endpoint_url
    if settings.dynamodb_region is not None:
        options["region_name"] = settings.dynamodb_region
    session = aioboto3.Session()
    async with session.resource("dynamodb", **options) as dynamodb:
        yield await dynamodb.Table(settings.dynamodb_table)


@asynccontextmanager
async def _storage(
    settings: BreakerSettings,
    *,
    redis_client: Redis | None,
    dynamodb_table: Any | None,
) -> AsyncIterator[AbstractBreakerStorage]:
    if redis_client is not None or dynamodb_table is not None:
        yield build_storage(
            settings, redis_client=redis_client, dynamodb_table=dynamodb_table
        )
        return
    if settings.dynamodb_table is not None:
        async with _dynamodb_table(settings) as table:
            yield build_storage(settings, dynamodb_table=table)
        return
    if settings.redis_url is not None:
        owned = Redis.from_url(settings.redis_url, decode_responses=True)
        try:
            yield build_storage(settings, redis_client=owned)
        finally:
            await owned.aclose()
        return
    yield build_storage(settings)


@asynccontextmanager
async def open_circuit_breaker(
    settings: BreakerSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    redis_client: Redis | None = None,
    dynamodb_table: Any | None = None,
) -> AsyncIterator[CircuitBreaker]:
    """Configure logging and yield a breaker, owning any clients it had to create.

    Clients passed in stay open on exit; clients created from settings are
    closed. Supplied clients take precedence over store settings.
    """
    logger = configure_structlog(log_level=settings.log_level)
    async with _http_client(http_client) as client:
        async with _storage(
            settings, redis_client=redis_client, dynamodb_table=dynamodb_table
        ) as storage:
            yield build_circuit_breaker(
                settings,
                http_client=client,
                storage=storage,
                logger=logger,
            )
