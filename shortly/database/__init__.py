"""
Database Connection and Model Module for URL Shortener Service

This module handles database connectivity and model definitions for the URL
shortening service. It manages connections to both Cassandra (primary storage)
and Redis (caching layer) with retry logic and environment-specific settings.

Tables:
    - url: short code -> long URL mapping with creation and expiry dates
    - long_url_index: long URL -> short code, used to reuse active mappings
    - url_clicks: counter table holding redirect counts per short code

Environment Configurations:
    - Development: External Redis with SSL/TLS and authentication
    - Production: Internal Redis without SSL
    - Cassandra: Secure connect bundle with client credentials

Dependencies:
    - cassandra-driver: DataStax Python driver for Cassandra connectivity
    - redis: Async Redis client for caching
"""

import base64
import os
from datetime import datetime, timezone
from time import sleep

from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, ConnectionException, NoHostAvailable, Session
from cassandra.cqlengine import columns, connection
from cassandra.cqlengine.management import sync_table
from cassandra.cqlengine.models import Model
from cassandra.policies import RoundRobinPolicy
from cassandra.query import dict_factory
import redis.asyncio as redis
from redis.exceptions import ConnectionError

from shortly.core.config import settings
from shortly.services.logger import setup_logger

# Global Redis client instance
redis_client: redis.Redis = None

logger = setup_logger()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form Cassandra stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class URL(Model):
    """
    Cassandra model for a shortened URL.

    Attributes:
        short_code (Text): Minted base62 code or custom alias. Primary key, so a
                           redirect is a single-partition read.
        long_url (Text): Destination of the redirect.
        created_at (DateTime): When the mapping was stored (UTC).
        expires_at (DateTime): Optional expiry (UTC); null means never.
    """

    __table_name__ = "url"
    __keyspace__ = settings.KEYSPACE

    short_code = columns.Text(primary_key=True, required=True)
    long_url = columns.Text(required=True)
    created_at = columns.DateTime(default=utcnow)
    expires_at = columns.DateTime()


class LongUrlIndex(Model):
    """Reverse lookup from a long URL to the short code last issued for it."""

    __table_name__ = "long_url_index"
    __keyspace__ = settings.KEYSPACE

    long_url = columns.Text(primary_key=True, required=True)
    short_code = columns.Text(required=True)


class UrlClicks(Model):
    """Redirect counter per short code."""

    __table_name__ = "url_clicks"
    __keyspace__ = settings.KEYSPACE

    short_code = columns.Text(primary_key=True, required=True)
    click_count = columns.Counter()


def connect_to_db() -> None:
    """
    Establish connection to Cassandra with retry logic and table initialization.

    Connection Process:
        1. Writes the secure connect bundle from ASTRA_BUNDLE_B64
        2. Configures authentication using client ID and secret
        3. Establishes the cluster connection
        4. Sets the session with a dictionary row factory
        5. Synchronizes the url, long_url_index and url_clicks tables

    Retry Strategy:
        Maximum 10 connection attempts with 5-second delays.

    Raises:
        RuntimeError: If all connection attempts fail.
        FileNotFoundError: If the secure connect bundle cannot be found.
    """

    BASE_DIR = os.path.dirname(os.path.abspath(__file__))
    BUNDLE_PATH = os.path.join(BASE_DIR, "secure-connect-url-shortener.zip")
    MAX_RETRIES = 10
    RETRY_DELAY = 5  # seconds

    with open(BUNDLE_PATH, "wb") as bundle_file:
        bundle_file.write(base64.b64decode(settings.ASTRA_BUNDLE_B64))

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            logger.info(
                "Attempting to connect to Cassandra (Attempt %d/%d)...",
                attempt,
                MAX_RETRIES,
            )

            if not os.path.exists(BUNDLE_PATH):
                logger.error("Secure connect bundle not found at %s", BUNDLE_PATH)
                raise FileNotFoundError(
                    f"Secure connect bundle not found at {BUNDLE_PATH}"
                )

            auth_provider = PlainTextAuthProvider(
                username=settings.CASSANDRA_CLIENT_ID,
                password=settings.CASSANDRA_CLIENT_SECRET,
            )

            cluster = Cluster(
                cloud={"secure_connect_bundle": BUNDLE_PATH},
                auth_provider=auth_provider,
                load_balancing_policy=RoundRobinPolicy(),
                idle_heartbeat_interval=3,
                protocol_version=4,
            )

            session = cluster.connect(settings.KEYSPACE)
            session.row_factory = dict_factory

            # Set global session for CQL Engine models
            connection.set_session(session)

            sync_table(URL)
            sync_table(LongUrlIndex)
            sync_table(UrlClicks)

            logger.info(
                "Cassandra connection established and tables are created successfully."
            )
            return

        except (NoHostAvailable, ConnectionException) as e:
            logger.error("Connection attempt %d failed: %s", attempt, e)
            if attempt < MAX_RETRIES:
                logger.info("Retrying in %d seconds...", RETRY_DELAY)
                sleep(RETRY_DELAY)
            else:
                logger.error("All connection attempts exhausted")

    logger.error("Failed to establish Cassandra connection after all retry attempts")
    raise RuntimeError("Failed to connect to Cassandra after multiple attempts.")


def get_cassandra_session() -> Session:
    """Return the session registered with cqlengine by connect_to_db()."""
    return connection.get_session()


def connect_to_redis() -> redis.Redis:
    """
    Establish connection to Redis with environment-specific configuration.

    Development (ENV="dev") uses the external host with SSL and credentials;
    production uses the internal host without either.

    Raises:
        ConnectionError: If Redis is unreachable or authentication fails.
    """
    global redis_client

    logger.info("Initializing Redis connection...")

    try:
        is_dev = settings.ENV == "dev"
        host = settings.REDIS_HOST_EXTERNAL if is_dev else settings.REDIS_HOST_INTERNAL
        username = settings.REDIS_USERNAME if is_dev else None
        password = settings.REDIS_PASSWORD if is_dev else None

        logger.info(
            "Connecting to Redis at %s:%d (SSL: %s, Auth: %s)",
            host,
            settings.REDIS_PORT,
            is_dev,
            bool(username),
        )

        redis_client = redis.Redis(
            host=host,
            password=password,
            username=username,
            port=settings.REDIS_PORT,
            ssl=is_dev,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
            socket_connect_timeout=20,
            socket_timeout=10,
        )

        logger.info("Redis connection established successfully.")

        return redis_client
    except ConnectionError as e:
        logger.error("Redis connection failed: %s", e)
        raise


def get_redis_client() -> redis.Redis:
    """
    Retrieve the global Redis client instance for dependency injection.

    Raises:
        RuntimeError: If called before connect_to_redis().
    """
    if redis_client is None:
        logger.error("Redis client not initialized. Call connect_to_redis() first.")
        raise RuntimeError("Redis client not initialized")

    return redis_client
