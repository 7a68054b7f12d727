"""
Database Repository Module for URL Shortener Service

This module provides the data access layer for the URL shortening service,
using Cassandra for persistence and Redis as a cache in front of it.

Data Flow:
    1. URL Creation: Mint short code -> re-check Cassandra -> store -> cache
    2. URL Resolution: Check Redis cache -> fallback to Cassandra -> update cache
       -> bump click counter
    3. Deletion: Remove Cassandra rows -> evict cache entry

Short Codes:
    Codes come from the process CompactIdGenerator. It guarantees uniqueness
    within this instance only, so every minted code is checked against storage
    and re-minted on collision, up to MAX_COLLISION_RETRIES times. Minting can
    block for up to a second when the per-second sequence is exhausted, so it
    runs in the thread pool rather than on the event loop.

Error Handling:
    Storage errors are logged and re-raised for the HTTP layer to map.
"""

from datetime import datetime, timedelta
from typing import Optional

from cassandra import InvalidRequest
from cassandra.cluster import Session
import redis.asyncio as redis
from redis.exceptions import ResponseError, TimeoutError
from starlette.concurrency import run_in_threadpool

from shortly.core.config import settings
from shortly.core.exceptions import (
    AliasAlreadyInUseError,
    ShortCodeCollisionError,
    UrlExpiredError,
    UrlNotFoundError,
)
from shortly.database import get_cassandra_session, utcnow
from shortly.database.schema import ShortenRequest, ShortenResponse, UrlStatsResponse
from shortly.services.logger import setup_logger
from shortly.utils.compact_id import CompactIdGenerator

logger = setup_logger()

SELECT_URL = "SELECT * FROM url WHERE short_code=?"
INSERT_URL = (
    "INSERT INTO url (short_code, long_url, created_at, expires_at) VALUES (?, ?, ?, ?)"
)
DELETE_URL = "DELETE FROM url WHERE short_code=?"
SELECT_LONG_URL_INDEX = "SELECT * FROM long_url_index WHERE long_url=?"
INSERT_LONG_URL_INDEX = (
    "INSERT INTO long_url_index (long_url, short_code) VALUES (?, ?)"
)
DELETE_LONG_URL_INDEX = "DELETE FROM long_url_index WHERE long_url=?"
SELECT_CLICKS = "SELECT * FROM url_clicks WHERE short_code=?"
INCREMENT_CLICKS = (
    "UPDATE url_clicks SET click_count = click_count + 1 WHERE short_code=?"
)
DELETE_CLICKS = "DELETE FROM url_clicks WHERE short_code=?"


def _cache_key(short_code: str) -> str:
    return f"url:{short_code}"


def _execute(session: Session, query: str, params: list):
    prepared = session.prepare(query)
    return session.execute_async(prepared, params).result()


def _fetch_url_row(session: Session, short_code: str) -> Optional[dict]:
    return _execute(session, SELECT_URL, [short_code]).one()


def _is_expired(row: dict, now: Optional[datetime] = None) -> bool:
    """Check if the row has an expiry date in the past."""
    expires_at = row.get("expires_at")
    return expires_at is not None and (now or utcnow()) > expires_at


def _build_shorten_response(row: dict) -> ShortenResponse:
    return ShortenResponse(
        short_url=f"{settings.BASE_URL}/{row['short_code']}",
        short_code=row["short_code"],
        long_url=row["long_url"],
        created_at=row["created_at"],
        expires_at=row.get("expires_at"),
    )


def _serialize_row(row: dict) -> dict:
    expires_at = row.get("expires_at")
    return {
        "short_code": row["short_code"],
        "long_url": row["long_url"],
        "created_at": row["created_at"].isoformat(),
        "expires_at": expires_at.isoformat() if expires_at else "",
    }


def _deserialize_row(data: dict) -> dict:
    return {
        "short_code": data["short_code"],
        "long_url": data["long_url"],
        "created_at": datetime.fromisoformat(data["created_at"]),
        "expires_at": (
            datetime.fromisoformat(data["expires_at"]) if data["expires_at"] else None
        ),
    }


async def _cache_url_mapping(row: dict, redis_client: redis.Redis):
    """Cache the URL mapping in Redis.

    The entry lives for CACHE_TTL seconds, or until the URL expires if sooner.
    """
    ttl = settings.CACHE_TTL
    if row.get("expires_at") is not None:
        ttl = min(ttl, int((row["expires_at"] - utcnow()).total_seconds()))
    if ttl <= 0:
        return

    key = _cache_key(row["short_code"])
    await redis_client.hset(name=key, mapping=_serialize_row(row))
    await redis_client.expire(key, ttl)


def _calculate_expiration(expiration_days: Optional[int]) -> Optional[datetime]:
    days = expiration_days or settings.DEFAULT_EXPIRY_DAYS
    if days and days > 0:
        expires_at = utcnow() + timedelta(days=days)
        logger.info("URL will expire on: %s", expires_at)
        return expires_at

    logger.debug("No expiration set")
    return None


async def short_code_exists(short_code: str, session: Session) -> bool:
    """Check whether a short code is already stored in Cassandra.

    Raises:
        InvalidRequest: If the Cassandra operation fails.
    """
    return _fetch_url_row(session, short_code) is not None


async def generate_unique_short_code(
    generator: CompactIdGenerator, session: Session
) -> str:
    """Mint a short code that is not yet present in storage.

    Args:
        generator (CompactIdGenerator): The process short code generator.
        session (Session): Cassandra session.

    Returns:
        str: A 7-character short code unused in storage.

    Raises:
        ShortCodeCollisionError: If every attempt collided.
        ClockRegressionError: If the generator observed a backwards clock.
        MintInterruptedError: If the generator could not wait for the next second.
        EncodingRangeError: If minted IDs no longer fit in 7 characters.
    """
    logger.debug("Generating new Base62 short code...")

    attempts = settings.MAX_COLLISION_RETRIES + 1
    for attempt in range(1, attempts + 1):
        short_code = await run_in_threadpool(generator.generate_short_code)
        if not await short_code_exists(short_code, session):
            if attempt > 1:
                logger.info("Resolved %d collision(s)", attempt - 1)
            return short_code
        logger.warning("Collision detected for %s (attempt %d)", short_code, attempt)

    raise ShortCodeCollisionError(
        f"Could not mint an unused short code after {attempts} attempts"
    )


async def _handle_custom_alias(alias: str, session: Session) -> str:
    logger.info("Custom alias requested: %s", alias)

    if await short_code_exists(alias, session):
        logger.warning("Custom alias '%s' already in use", alias)
        raise AliasAlreadyInUseError(f"Custom alias '{alias}' is already in use")

    return alias


async def _find_existing_active_url(long_url: str, session: Session) -> Optional[dict]:
    logger.debug("Checking if long URL already exists...")

    index_row = _execute(session, SELECT_LONG_URL_INDEX, [long_url]).one()
    if index_row is None:
        return None

    row = _fetch_url_row(session, index_row["short_code"])
    if row is None or _is_expired(row):
        return None
    return row


async def shorten_url(
    request: ShortenRequest,
    generator: CompactIdGenerator,
    redis_client: redis.Redis,
    session: Optional[Session] = None,
) -> ShortenResponse:
    """Create (or reuse) a short URL for the given long URL.

    A custom alias is used verbatim when free. Without one, an existing
    unexpired mapping for the same long URL is returned as is; otherwise a new
    short code is minted.

    Args:
        request (ShortenRequest): Validated shorten request.
        generator (CompactIdGenerator): The process short code generator.
        redis_client (redis.Redis): Async Redis client for caching operations.
        session (Optional[Session]): Cassandra session, defaults to the global one.

    Returns:
        ShortenResponse: The stored (or reused) mapping.

    Raises:
        AliasAlreadyInUseError: If the custom alias is taken.
        ShortCodeCollisionError: If no unused short code could be minted.
        InvalidRequest: If the Cassandra operation fails.
        ResponseError: If the Redis operation fails.
        TimeoutError: If the Redis operation times out.
    """
    session = session or get_cassandra_session()

    try:
        if request.has_custom_alias():
            short_code = await _handle_custom_alias(request.custom_alias, session)
        else:
            existing = await _find_existing_active_url(request.long_url, session)
            if existing is not None:
                logger.info("Existing short URL found: %s", existing["short_code"])
                return _build_shorten_response(existing)
            short_code = await generate_unique_short_code(generator, session)

        row = {
            "short_code": short_code,
            "long_url": request.long_url,
            "created_at": utcnow(),
            "expires_at": _calculate_expiration(request.expiration_days),
        }
        _execute(
            session,
            INSERT_URL,
            [row["short_code"], row["long_url"], row["created_at"], row["expires_at"]],
        )
        _execute(session, INSERT_LONG_URL_INDEX, [row["long_url"], short_code])
        await _cache_url_mapping(row, redis_client)

        logger.info("URL saved successfully - short code: %s", short_code)
        return _build_shorten_response(row)

    except (InvalidRequest, ResponseError, TimeoutError) as e:
        logger.error("Short URL generation failed: %s", e)
        raise


async def resolve_url(
    short_code: str,
    redis_client: redis.Redis,
    session: Optional[Session] = None,
) -> str:
    """Return the long URL for a short code and count the click.

    Raises:
        UrlNotFoundError: If the short code is unknown.
        UrlExpiredError: If the URL has expired.
        InvalidRequest: If the Cassandra operation fails.
        ResponseError: If the Redis operation fails.
        TimeoutError: If the Redis operation times out.
    """
    session = session or get_cassandra_session()

    try:
        cached_data = await redis_client.hgetall(_cache_key(short_code))
        if cached_data:
            logger.debug("Cache hit for short code: %s", short_code)
            row = _deserialize_row(cached_data)
        else:
            logger.debug("Cache miss for short code: %s, querying database", short_code)
            row = _fetch_url_row(session, short_code)
            if row is None:
                logger.error("URL not found for short code: %s", short_code)
                raise UrlNotFoundError(f"URL not found for short code: {short_code}")
            await _cache_url_mapping(row, redis_client)

        if _is_expired(row):
            logger.warning("URL has expired for short code: %s", short_code)
            raise UrlExpiredError(f"URL has expired for short code: {short_code}")

        _execute(session, INCREMENT_CLICKS, [short_code])
        return row["long_url"]

    except (InvalidRequest, ResponseError, TimeoutError) as e:
        logger.error("Failed to read long URL for %s: %s", short_code, e)
        raise


async def get_url_stats(
    short_code: str, session: Optional[Session] = None
) -> UrlStatsResponse:
    """Read a mapping and its click count straight from Cassandra.

    Raises:
        UrlNotFoundError: If the short code is unknown.
    """
    session = session or get_cassandra_session()

    row = _fetch_url_row(session, short_code)
    if row is None:
        raise UrlNotFoundError(f"URL not found for short code: {short_code}")

    clicks = _execute(session, SELECT_CLICKS, [short_code]).one()
    return UrlStatsResponse(
        short_code=row["short_code"],
        long_url=row["long_url"],
        click_count=(clicks or {}).get("click_count") or 0,
        created_at=row["created_at"],
        expires_at=row.get("expires_at"),
    )


async def delete_url(
    short_code: str,
    redis_client: redis.Redis,
    session: Optional[Session] = None,
) -> None:
    """Delete a mapping, its click counter and its cache entry.

    Raises:
        UrlNotFoundError: If the short code is unknown.
    """
    session = session or get_cassandra_session()

    try:
        row = _fetch_url_row(session, short_code)
        if row is None:
            logger.error("Cannot delete - URL not found for short code: %s", short_code)
            raise UrlNotFoundError(f"URL not found for short code: {short_code}")

        _execute(session, DELETE_URL, [short_code])
        _execute(session, DELETE_CLICKS, [short_code])

        index_row = _execute(session, SELECT_LONG_URL_INDEX, [row["long_url"]]).one()
        if index_row is not None and index_row["short_code"] == short_code:
            _execute(session, DELETE_LONG_URL_INDEX, [row["long_url"]])

        await redis_client.delete(_cache_key(short_code))
        logger.info("URL deleted successfully - short code: %s", short_code)

    except (InvalidRequest, ResponseError, TimeoutError) as e:
        logger.error("Failed to delete URL %s: %s", short_code, e)
        raise
