from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any, cast

import httpx
import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

import shared_breaker.bootstrap as bootstrap_mod
from shared_breaker.bootstrap import (
    build_circuit_breaker,
    build_storage,
    open_circuit_breaker,
)
from shared_breaker.circuit_breaker import (
    BreakerOpenError,
    CircuitBreakerConfig,
    CircuitState,
    InMemoryBreakerStorage,
)
from shared_breaker.circuit_breaker.integrations.dynamodb.storage import (
    DynamoDBBreakerStorage,
)
from shared_breaker.circuit_breaker.integrations.redis.storage import (
    RedisBreakerStorage,
)
from shared_breaker.circuit_breaker.transitions import default_state
from shared_breaker.executor import RequestDescriptor
from shared_breaker.settings import BreakerSettings
from tests.shared_breaker.support.fakes import (
    FakeClock,
    FakeDynamoSession,
    FakeDynamoTable,
    FakeLogger,
    FakeRedis,
    RecordingListener,
)

pytestmark = pytest.mark.asyncio

_URL = "https://billing.example.test/health"
_REQUEST = RequestDescriptor(method="GET", url=_URL)


class _RedisFactory:
    def __init__(self) -> None:
        self.created: list[FakeRedis] = []
        self.calls: list[tuple[str, dict[str, object]]] = []

    def from_url(self, url: str, **kwargs: object) -> FakeRedis:
        self.calls.append((url, kwargs))
        client = FakeRedis()
        self.created.append(client)
        return client


class _LoggingSetup:
    def __init__(self) -> None:
        self.levels: list[str] = []
        self.logger = FakeLogger()

    def __call__(self, *, log_level: str) -> FakeLogger:
        self.levels.append(log_level)
        return self.logger


@pytest.fixture(autouse=True)
def logging_setup(monkeypatch: pytest.MonkeyPatch) -> _LoggingSetup:
    setup = _LoggingSetup()
    monkeypatch.setattr(bootstrap_mod, "configure_structlog", setup)
    return setup


def _settings(**overrides: object) -> BreakerSettings:
    values: dict[str, object] = {"breaker_id": "billing", "failure_threshold": 1}
    values.update(overrides)
    return BreakerSettings(**cast(Any, values))


@pytest_asyncio.fixture
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


async def test_build_storage_defaults_to_in_memory() -> None:
    assert isinstance(build_storage(_settings()), InMemoryBreakerStorage)


async def test_build_storage_uses_redis_with_configured_prefix(
    clock: FakeClock,
) -> None:
    fake_redis = FakeRedis()
    storage = build_storage(
        _settings(redis_key_prefix="svc-cb:"),
        redis_client=cast(Any, fake_redis),
    )

    assert isinstance(storage, RedisBreakerStorage)
    await storage.compare_and_swap(
        "billing", None, default_state("billing", CircuitBreakerConfig(), clock.now())
    )
    assert list(fake_redis.hashes) == ["svc-cb:billing"]


async def test_built_breaker_logs_transitions_and_notifies_listeners(
    httpx_mock: HTTPXMock,
    http_client: httpx.AsyncClient,
    fake_logger: FakeLogger,
    clock: FakeClock,
) -> None:
    httpx_mock.add_response(method="GET", url=_URL, status_code=502)
    listener = RecordingListener()
    breaker = build_circuit_breaker(
        _settings(),
        http_client=http_client,
        logger=fake_logger,
        listeners=[listener],
    )

    with pytest.raises(httpx.HTTPStatusError):
        await breaker.execute("billing", _REQUEST)
    with pytest.raises(BreakerOpenError):
        await breaker.execute("billing", _REQUEST)

    assert "circuit_breaker.state_changed" in fake_logger.events
    assert "circuit_breaker.call_rejected" in fake_logger.events
    assert [event.new_state for event in listener.transitions] == [CircuitState.OPEN]


async def test_open_circuit_breaker_without_redis_url(
    httpx_mock: HTTPXMock,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    factory = _RedisFactory()
    monkeypatch.setattr(bootstrap_mod, "Redis", factory)
    httpx_mock.add_response(method="GET", url=_URL, json={"status": "ok"})

    async with open_circuit_breaker(_settings()) as breaker:
        response = await breaker.execute("billing", _REQUEST)

    assert response.json() == {"status": "ok"}
    assert factory.calls == []


async def test_open_circuit_breaker_owns_redis_client_from_url(
    httpx_mock: HTTPXMock,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    factory = _RedisFactory()
    monkeypatch.setattr(bootstrap_mod, "Redis", factory)
    httpx_mock.add_response(method="GET", url=_URL, status_code=500)
    settings = _settings(redis_url="redis://cache:6379/0", failure_threshold=3)

    async with open_circuit_breaker(settings) as breaker:
        with pytest.raises(httpx.HTTPStatusError):
            await breaker.execute("billing", _REQUEST)

    assert factory.calls == [("redis://cache:6379/0", {"decode_responses": True})]
    (fake_redis,) = factory.created
    assert fake_redis.hashes["circuit_breaker:billing"]["failure_count"] == "1"
    assert fake_redis.closed is True


async def test_open_circuit_breaker_leaves_supplied_clients_open(
    httpx_mock: HTTPXMock,
    http_client: httpx.AsyncClient,
    clock: FakeClock,
) -> None:
    httpx_mock.add_response(method="GET", url=_URL)
    fake_redis = FakeRedis()
    settings = _settings(redis_url="redis://cache:6379/0")

    async with open_circuit_breaker(
        settings,
        http_client=http_client,
        redis_client=cast(Any, fake_redis),
    ) as breaker:
        await breaker.execute("billing", _REQUEST)

    assert fake_redis.closed is False
    assert http_client.is_closed is False


async def test_build_storage_prefers_dynamodb_table(clock: FakeClock) -> None:
    storage = build_storage(
        _settings(),
        redis_client=cast(Any, FakeRedis()),
        dynamodb_table=FakeDynamoTable(),
    )

    assert isinstance(storage, DynamoDBBreakerStorage)


async def test_open_circuit_breaker_configures_logging_from_settings(
    httpx_mock: HTTPXMock,
    clock: FakeClock,
    logging_setup: _LoggingSetup,
) -> None:
    httpx_mock.add_response(method="GET", url=_URL, status_code=503)

    async with open_circuit_breaker(_settings(log_level="debug")) as breaker:
        with pytest.raises(httpx.HTTPStatusError):
            await breaker.execute("billing", _REQUEST)

    assert logging_setup.levels == ["DEBUG"]
    assert "circuit_breaker.state_changed" in logging_setup.logger.events


async def test_open_circuit_breaker_opens_dynamodb_table_from_settings(
    httpx_mock: HTTPXMock,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    table = FakeDynamoTable("breakers")
    session = FakeDynamoSession(table)
    monkeypatch.setattr(
        bootstrap_mod, "aioboto3", SimpleNamespace(Session=lambda: session)
    )
    httpx_mock.add_response(method="GET", url=_URL, status_code=500)
    settings = _settings(
        dynamodb_table="breakers",
        dynamodb_endpoint_url="http://localhost:8000",
        dynamodb_region="ap-southeast-2",
        failure_threshold=3,
    )

    async with open_circuit_breaker(settings) as breaker:
        with pytest.raises(httpx.HTTPStatusError):
            await breaker.execute("billing", _REQUEST)

    ((service, options, resource),) = session.resources
    assert service == "dynamodb"
    assert options == {
        "endpoint_url": "http://localhost:8000",
        "region_name": "ap-southeast-2",
    }
    assert resource.closed is True
    assert table.items["billing"]["failure_count"] == 1
