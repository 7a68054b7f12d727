# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from shortly.database import repo
from shortly.utils.compact_id import CompactIdGenerator

from tests.helpers import FakeCassandraSession, FakeClock, FakeRedis


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_generator(clock: FakeClock) -> Callable[..., CompactIdGenerator]:
    def _make(machine_id: int = 1, **kwargs: Any) -> CompactIdGenerator:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", clock.sleep)
        return CompactIdGenerator(machine_id, **kwargs)

    return _make


@pytest.fixture()
def cassandra_session(monkeypatch: pytest.MonkeyPatch) -> FakeCassandraSession:
    session = FakeCassandraSession()
    monkeypatch.setattr(repo, "get_cassandra_session", lambda: session)
    return session


@pytest.fixture()
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def client(
    cassandra_session: FakeCassandraSession,
    redis_client: FakeRedis,
    make_generator: Callable[..., CompactIdGenerator],
) -> Iterator[TestClient]:
    from shortly.database import get_redis_client
    from shortly.main import app, get_id_generator

    generator = make_generator(machine_id=7)
    app.dependency_overrides[get_id_generator] = lambda: generator
    app.dependency_overrides[get_redis_client] = lambda: redis_client
    try:
        # No context manager: lifespan would connect to real Cassandra/Redis.
        yield TestClient(app, follow_redirects=False)
    finally:
        app.dependency_overrides.clear()
