"""
FastAPI URL Shortener Service

A URL shortening service built with FastAPI, Cassandra, and Redis. Short codes
are 7-character base62 strings minted by a compact, machine-partitioned ID
generator, so horizontally scaled instances need no coordination as long as
each runs with its own MACHINE_ID.

Key Features:
    - URL shortening with optional custom alias and expiry
    - Reuse of an existing active short URL for the same long URL
    - Fast resolution and redirects with Redis caching
    - Click statistics and deletion
    - QR code rendering of short URLs

Architecture:
    - FastAPI for the web framework and automatic API documentation
    - Cassandra for persistent URL storage
    - Redis for caching
    - CompactIdGenerator for unique short codes, one instance per process

Error Mapping:
    - ConfigurationError (bad MACHINE_ID) aborts startup
    - Invalid request bodies become 400 responses on every endpoint
    - Clock regression, interrupted mints and exhausted collision retries
      become 500 responses; none of them is retried here
"""

from contextlib import asynccontextmanager

from cassandra import InvalidRequest
from cassandra.cqlengine import connection
from fastapi import Depends, FastAPI, HTTPException, Path, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from pydantic import ValidationError
import redis.asyncio as redis
from redis.exceptions import ConnectionError, ResponseError, TimeoutError

from shortly.core.config import build_id_generator
from shortly.core.exceptions import (
    AliasAlreadyInUseError,
    ConfigurationError,
    IdGeneratorError,
    QrGenerationError,
    ShortCodeCollisionError,
    UrlExpiredError,
    UrlNotFoundError,
)
from shortly.database import connect_to_db, connect_to_redis, get_redis_client
from shortly.database.repo import delete_url, get_url_stats, resolve_url, shorten_url
from shortly.database.schema import (
    QrRequest,
    ShortenRequest,
    ShortenResponse,
    UrlStatsResponse,
)
from shortly.services.logger import setup_logger
from shortly.services.qr import generate_qr_png
from shortly.utils.compact_id import CompactIdGenerator

logger = setup_logger()

STORAGE_ERRORS = (InvalidRequest, ResponseError, TimeoutError)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the short code generator and open database connections.

    Raises:
        ConfigurationError: If MACHINE_ID is invalid; the service must not start.
        RuntimeError: If Cassandra cannot be reached.
        ConnectionError: If Redis cannot be reached.
    """
    logger.info("Starting application and initializing database...")

    try:
        app.state.id_generator = build_id_generator()
    except ConfigurationError as e:
        logger.critical("Invalid ID generator configuration: %s", e)
        raise

    try:
        connect_to_db()
        app.state.redis = connect_to_redis()
    except RuntimeError as e:
        logger.error("Database initialization failed: %s", e)
        raise
    except ConnectionError as e:
        logger.error("Redis connection failed: %s", e)
        raise
    except FileNotFoundError as e:
        logger.error("Secure connect bundle not found: %s", e)
        raise

    yield

    logger.info("Application is shutting down.")

    session = connection.get_session()
    session.shutdown()
    session.cluster.shutdown()
    await app.state.redis.aclose()


app = FastAPI(title="Shortly", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report invalid request bodies as 400 with the first validation message."""
    errors = exc.errors()
    detail = errors[0]["msg"] if errors else "Invalid request"
    logger.warning("Validation error on %s: %s", request.url.path, detail)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail}
    )


def get_id_generator(request: Request) -> CompactIdGenerator:
    """Return the generator built during startup."""
    return request.app.state.id_generator


async def _shorten(
    url_data: ShortenRequest,
    generator: CompactIdGenerator,
    redis_client: redis.Redis,
) -> ShortenResponse:
    try:
        return await shorten_url(url_data, generator, redis_client)
    except AliasAlreadyInUseError as e:
        logger.warning("Custom alias rejected: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (IdGeneratorError, ShortCodeCollisionError) as e:
        logger.error("Short code generation failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Short code generation failed",
        )
    except STORAGE_ERRORS as e:
        logger.error("Short URL generation failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Short URL generation failed",
        )


async def _resolve(short_code: str, redis_client: redis.Redis) -> str:
    try:
        return await resolve_url(short_code, redis_client)
    except UrlNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UrlExpiredError as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(e))
    except STORAGE_ERRORS as e:
        logger.error("Error retrieving long URL: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error retrieving long URL",
        )


@app.get("/health", response_class=PlainTextResponse, summary="Health check")
async def health_check():
    return "URL Shortener is running!"


@app.post(
    "/api/shorten",
    status_code=status.HTTP_201_CREATED,
    response_model=ShortenResponse,
    summary="Shorten a URL",
    description="""
    Create a shortened URL from a long URL. Optionally specify a custom alias
    and a number of days until expiry. If the long URL already has an active
    short URL and no alias is requested, the existing one is returned.
    """,
    responses={
        400: {"description": "Invalid URL format or parameters, or alias in use"},
        500: {"description": "Short code generation failed"},
    },
)
async def create_url(
    url_data: ShortenRequest,
    generator: CompactIdGenerator = Depends(get_id_generator),
    redis_client: redis.Redis = Depends(get_redis_client),
):
    logger.info("[POST /api/shorten] Incoming request to shorten URL")
    response = await _shorten(url_data, generator, redis_client)
    logger.info(
        "[POST /api/shorten] Response - short code: %s, short URL: %s",
        response.short_code,
        response.short_url,
    )
    return response


@app.get(
    "/api/url/{short_code}",
    response_class=PlainTextResponse,
    summary="Get long URL",
    responses={
        404: {"description": "Short code not found"},
        410: {"description": "URL has expired"},
    },
)
async def get_long_url(
    short_code: str = Path(..., description="The short code to look up"),
    redis_client: redis.Redis = Depends(get_redis_client),
):
    long_url = await _resolve(short_code, redis_client)
    logger.info("[GET /api/url/%s] Resolved to: %s", short_code, long_url)
    return long_url


@app.get(
    "/api/stats/{short_code}",
    response_model=UrlStatsResponse,
    summary="Get URL statistics",
    responses={404: {"description": "Short code not found"}},
)
async def get_stats(
    short_code: str = Path(..., description="The short code to get statistics for"),
):
    try:
        return await get_url_stats(short_code)
    except UrlNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidRequest as e:
        logger.error("Error reading statistics: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error reading statistics",
        )


@app.delete(
    "/api/url/{short_code}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a shortened URL",
    responses={404: {"description": "Short code not found"}},
)
async def remove_url(
    short_code: str = Path(..., description="The short code of the URL to delete"),
    redis_client: redis.Redis = Depends(get_redis_client),
):
    try:
        await delete_url(short_code, redis_client)
    except UrlNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except STORAGE_ERRORS as e:
        logger.error("Error deleting URL: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error deleting URL",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/qr/generate",
    summary="Generate QR Code",
    description="Shortens the URL, then returns a PNG QR code of the short URL.",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}}},
        400: {"description": "Invalid URL format or size"},
    },
)
async def generate_qr_code(
    qr_request: QrRequest,
    generator: CompactIdGenerator = Depends(get_id_generator),
    redis_client: redis.Redis = Depends(get_redis_client),
):
    try:
        shorten_request = ShortenRequest(long_url=qr_request.url)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.errors()[0]["msg"],
        )
    shortened = await _shorten(shorten_request, generator, redis_client)
    try:
        qr_bytes = generate_qr_png(shortened.short_url, qr_request.size_or_default())
    except QrGenerationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        )
    return Response(
        content=qr_bytes,
        media_type="image/png",
        headers={"Content-Disposition": 'attachment; filename="qr.png"'},
    )


@app.get(
    "/{short_code}",
    summary="Redirect to long URL",
    status_code=status.HTTP_302_FOUND,
    responses={
        302: {"description": "Redirect to the long URL"},
        404: {"description": "Short code not found"},
        410: {"description": "URL has expired"},
    },
)
async def redirect_to_long_url(
    short_code: str = Path(..., description="The short code to redirect"),
    redis_client: redis.Redis = Depends(get_redis_client),
):
    long_url = await _resolve(short_code, redis_client)
    logger.info("[GET /%s] Redirecting (302) to: %s", short_code, long_url)
    return RedirectResponse(url=long_url, status_code=status.HTTP_302_FOUND)
