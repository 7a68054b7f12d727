# tests/test_repo.py
from datetime import timedelta

import pytest

from shortly.core.config import settings
from shortly.core.exceptions import (
    AliasAlreadyInUseError,
    ClockRegressionError,
    ShortCodeCollisionError,
    UrlExpiredError,
    UrlNotFoundError,
)
from shortly.database import repo, utcnow
from shortly.database.schema import ShortenRequest

from tests.helpers import T0


@pytest.mark.asyncio
async def test_shorten_mints_stores_and_caches(
    make_generator, cassandra_session, redis_client
) -> None:
    generator = make_generator()
    response = await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/a"), generator, redis_client
    )

    assert len(response.short_code) == 7
    assert response.short_url == f"{settings.BASE_URL}/{response.short_code}"
    assert response.expires_at is None
    assert cassandra_session.urls[response.short_code]["long_url"] == (
        "https://example.com/a"
    )
    assert cassandra_session.long_url_index["https://example.com/a"] == (
        response.short_code
    )
    cached = redis_client.hashes[f"url:{response.short_code}"]
    assert cached["long_url"] == "https://example.com/a"
    assert redis_client.ttls[f"url:{response.short_code}"] == settings.CACHE_TTL


@pytest.mark.asyncio
async def test_shorten_reuses_active_mapping(
    make_generator, cassandra_session, redis_client
) -> None:
    generator = make_generator()
    request = ShortenRequest(long_url="https://example.com/a")

    first = await repo.shorten_url(request, generator, redis_client)
    second = await repo.shorten_url(request, generator, redis_client)

    assert first.short_code == second.short_code
    assert generator.total_generated == 1


@pytest.mark.asyncio
async def test_shorten_replaces_expired_mapping(
    make_generator, cassandra_session, redis_client
) -> None:
    generator = make_generator()
    request = ShortenRequest(long_url="https://example.com/a")
    first = await repo.shorten_url(request, generator, redis_client)
    cassandra_session.urls[first.short_code]["expires_at"] = utcnow() - timedelta(
        days=1
    )

    second = await repo.shorten_url(request, generator, redis_client)

    assert second.short_code != first.short_code
    assert cassandra_session.long_url_index["https://example.com/a"] == (
        second.short_code
    )


@pytest.mark.asyncio
async def test_shorten_with_expiration_days(
    make_generator, cassandra_session, redis_client
) -> None:
    response = await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/e", expiration_days=2),
        make_generator(),
        redis_client,
    )

    assert response.expires_at is not None
    assert timedelta(days=1) < response.expires_at - utcnow() <= timedelta(days=2)
    assert redis_client.ttls[f"url:{response.short_code}"] <= settings.CACHE_TTL


@pytest.mark.asyncio
async def test_custom_alias_is_used_and_rejected_when_taken(
    make_generator, cassandra_session, redis_client
) -> None:
    generator = make_generator()
    response = await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/a", custom_alias="mylink"),
        generator,
        redis_client,
    )
    assert response.short_code == "mylink"
    assert generator.total_generated == 0

    with pytest.raises(AliasAlreadyInUseError):
        await repo.shorten_url(
            ShortenRequest(long_url="https://example.com/b", custom_alias="mylink"),
            generator,
            redis_client,
        )


@pytest.mark.asyncio
async def test_collision_is_re_minted(make_generator, cassandra_session) -> None:
    generator = make_generator()
    taken = make_generator().generate_short_code()
    cassandra_session.urls[taken] = {
        "short_code": taken,
        "long_url": "https://elsewhere.example.com",
        "created_at": utcnow(),
        "expires_at": None,
    }

    short_code = await repo.generate_unique_short_code(generator, cassandra_session)

    assert short_code != taken
    assert generator.total_generated == 2


@pytest.mark.asyncio
async def test_collision_retries_are_bounded(
    make_generator, cassandra_session, monkeypatch
) -> None:
    async def always_taken(short_code, session):
        return True

    monkeypatch.setattr(repo, "short_code_exists", always_taken)
    generator = make_generator()

    with pytest.raises(ShortCodeCollisionError):
        await repo.generate_unique_short_code(generator, cassandra_session)

    assert generator.total_generated == settings.MAX_COLLISION_RETRIES + 1


@pytest.mark.asyncio
async def test_clock_regression_propagates(
    make_generator, clock, cassandra_session, redis_client
) -> None:
    generator = make_generator()
    await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/a"), generator, redis_client
    )
    clock.now = T0 - 10

    with pytest.raises(ClockRegressionError):
        await repo.shorten_url(
            ShortenRequest(long_url="https://example.com/b"), generator, redis_client
        )
    assert "https://example.com/b" not in cassandra_session.long_url_index


@pytest.mark.asyncio
async def test_resolve_from_cache_and_counts_clicks(
    make_generator, cassandra_session, redis_client
) -> None:
    response = await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/a"),
        make_generator(),
        redis_client,
    )
    cassandra_session.statements.clear()

    assert await repo.resolve_url(response.short_code, redis_client) == (
        "https://example.com/a"
    )
    assert repo.SELECT_URL not in cassandra_session.statements
    assert cassandra_session.clicks[response.short_code] == 1


@pytest.mark.asyncio
async def test_resolve_cache_miss_reads_database_and_recaches(
    cassandra_session, redis_client
) -> None:
    cassandra_session.urls["abc1234"] = {
        "short_code": "abc1234",
        "long_url": "https://example.com/db",
        "created_at": utcnow(),
        "expires_at": None,
    }

    long_url = await repo.resolve_url("abc1234", redis_client)

    assert long_url == "https://example.com/db"
    assert redis_client.hashes["url:abc1234"]["long_url"] == "https://example.com/db"


@pytest.mark.asyncio
async def test_resolve_unknown_code(cassandra_session, redis_client) -> None:
    with pytest.raises(UrlNotFoundError):
        await repo.resolve_url("missing", redis_client)


@pytest.mark.asyncio
async def test_resolve_expired_url(cassandra_session, redis_client) -> None:
    cassandra_session.urls["old0001"] = {
        "short_code": "old0001",
        "long_url": "https://example.com/old",
        "created_at": utcnow() - timedelta(days=10),
        "expires_at": utcnow() - timedelta(days=1),
    }

    with pytest.raises(UrlExpiredError):
        await repo.resolve_url("old0001", redis_client)
    assert "url:old0001" not in redis_client.hashes
    assert "old0001" not in cassandra_session.clicks


@pytest.mark.asyncio
async def test_stats_report_clicks(
    make_generator, cassandra_session, redis_client
) -> None:
    response = await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/a"),
        make_generator(),
        redis_client,
    )
    for _ in range(3):
        await repo.resolve_url(response.short_code, redis_client)

    stats = await repo.get_url_stats(response.short_code)

    assert stats.click_count == 3
    assert stats.long_url == "https://example.com/a"


@pytest.mark.asyncio
async def test_stats_without_clicks(cassandra_session) -> None:
    cassandra_session.urls["new0001"] = {
        "short_code": "new0001",
        "long_url": "https://example.com/new",
        "created_at": utcnow(),
        "expires_at": None,
    }
    stats = await repo.get_url_stats("new0001")
    assert stats.click_count == 0

    with pytest.raises(UrlNotFoundError):
        await repo.get_url_stats("missing")


@pytest.mark.asyncio
async def test_delete_removes_rows_and_cache(
    make_generator, cassandra_session, redis_client
) -> None:
    response = await repo.shorten_url(
        ShortenRequest(long_url="https://example.com/a"),
        make_generator(),
        redis_client,
    )
    await repo.resolve_url(response.short_code, redis_client)

    await repo.delete_url(response.short_code, redis_client)

    assert response.short_code not in cassandra_session.urls
    assert response.short_code not in cassandra_session.clicks
    assert "https://example.com/a" not in cassandra_session.long_url_index
    assert f"url:{response.short_code}" not in redis_client.hashes

    with pytest.raises(UrlNotFoundError):
        await repo.delete_url(response.short_code, redis_client)
