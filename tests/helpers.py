# tests/helpers.py
from __future__ import annotations

import threading
from typing import Any, Optional

from shortly.database import repo
from shortly.utils.compact_id import EPOCH

T0 = EPOCH + 1_000


class FakeClock:
    """Manually driven wall clock; sleeping advances it."""

    def __init__(self, now: float = T0, advance_on_sleep: bool = True) -> None:
        self.now = float(now)
        self.advance_on_sleep = advance_on_sleep
        self.sleeps = 0
        self._lock = threading.Lock()

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps += 1
            if self.advance_on_sleep:
                self.now += seconds

    def tick(self, seconds: float = 1.0) -> None:
        self.now += seconds


class _ResultSet:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self._rows = rows

    def one(self) -> Optional[dict[str, Any]]:
        return self._rows[0] if self._rows else None


class _Future:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self._rows = rows

    def result(self) -> _ResultSet:
        return _ResultSet(self._rows)


class FakeCassandraSession:
    """In-memory stand-in for the statements issued by shortly.database.repo."""

    def __init__(self) -> None:
        self.urls: dict[str, dict[str, Any]] = {}
        self.long_url_index: dict[str, str] = {}
        self.clicks: dict[str, int] = {}
        self.statements: list[str] = []

    def prepare(self, query: str) -> str:
        return query

    def execute_async(self, query: str, params: list[Any]) -> _Future:
        self.statements.append(query)
        return _Future(self._dispatch(query, params))

    def _dispatch(self, query: str, params: list[Any]) -> list[dict[str, Any]]:
        if query == repo.SELECT_URL:
            row = self.urls.get(params[0])
            return [dict(row)] if row else []
        if query == repo.INSERT_URL:
            short_code, long_url, created_at, expires_at = params
            self.urls[short_code] = {
                "short_code": short_code,
                "long_url": long_url,
                "created_at": created_at,
                "expires_at": expires_at,
            }
            return []
        if query == repo.DELETE_URL:
            self.urls.pop(params[0], None)
            return []
        if query == repo.SELECT_LONG_URL_INDEX:
            code = self.long_url_index.get(params[0])
            return [{"long_url": params[0], "short_code": code}] if code else []
        if query == repo.INSERT_LONG_URL_INDEX:
            self.long_url_index[params[0]] = params[1]
            return []
        if query == repo.DELETE_LONG_URL_INDEX:
            self.long_url_index.pop(params[0], None)
            return []
        if query == repo.SELECT_CLICKS:
            if params[0] not in self.clicks:
                return []
            return [{"short_code": params[0], "click_count": self.clicks[params[0]]}]
        if query == repo.INCREMENT_CLICKS:
            self.clicks[params[0]] = self.clicks.get(params[0], 0) + 1
            return []
        if query == repo.DELETE_CLICKS:
            self.clicks.pop(params[0], None)
            return []
        raise AssertionError(f"Unexpected statement: {query}")


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the repository."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}

    async def hgetall(self, name: str) -> dict[str, str]:
        return dict(self.hashes.get(name, {}))

    async def hset(self, name: str, mapping: dict[str, str]) -> int:
        self.hashes.setdefault(name, {}).update(mapping)
        return len(mapping)

    async def expire(self, name: str, time: int) -> bool:
        self.ttls[name] = time
        return name in self.hashes

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            removed += self.hashes.pop(name, None) is not None
            self.ttls.pop(name, None)
        return removed

