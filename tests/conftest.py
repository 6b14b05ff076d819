"""Shared pytest fixtures for tokengate tests.

Every test gets fresh metrics, a controllable clock and an in-memory store.
HTTP tests go through ``create_app`` with effectively unlimited rate limits.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from starlette.testclient import TestClient

from tokengate.config import OAuthSettings
from tokengate.observability import reset_metrics
from tokengate.services import OAuthServices, build_services
from tokengate.storage import InMemoryTokenBackend, RedisTokenBackend, TokenStore
from tokengate.transport.server import create_app

from tests.factories import TEST_RATE_LIMIT, FakeClock, make_settings


@pytest.fixture(autouse=True)
def _reset_metrics() -> Iterator[None]:
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> OAuthSettings:
    return make_settings()


@pytest.fixture
def memory_backend(clock: FakeClock) -> InMemoryTokenBackend:
    return InMemoryTokenBackend(clock=clock)


@pytest.fixture
def store(memory_backend: InMemoryTokenBackend, clock: FakeClock) -> TokenStore:
    return TokenStore(memory_backend, sweep_interval=0, clock=clock)


@pytest.fixture
def services(settings: OAuthSettings, store: TokenStore, clock: FakeClock) -> OAuthServices:
    return build_services(settings, store=store, clock=clock)


@pytest.fixture
def client(services: OAuthServices) -> Iterator[TestClient]:
    app = create_app(
        services=services, rate_limit=TEST_RATE_LIMIT, introspect_rate_limit=TEST_RATE_LIMIT
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def fake_redis() -> AsyncIterator[FakeAsyncRedis]:
    redis_client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield redis_client
    await redis_client.aclose()


@pytest.fixture
def redis_backend(fake_redis: FakeAsyncRedis, clock: FakeClock) -> RedisTokenBackend:
    return RedisTokenBackend(fake_redis, key_prefix="test:", index_ttl=3600, clock=clock)
