from __future__ import annotations

import pytest

import shared_breaker.circuit_breaker.breaker as breaker_mod
import shared_breaker.circuit_breaker.storage as storage_mod
from tests.shared_breaker.support.fakes import FakeClock, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker and storage clocks on a controllable fake."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake.now)
    monkeypatch.setattr(storage_mod, "_utcnow", fake.now)
    return fake
