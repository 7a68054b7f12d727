from typing import Optional

from pydantic_settings import BaseSettings

from shortly.utils.compact_id import CompactIdGenerator


class Settings(BaseSettings):
    ENV: str = "dev"
    MACHINE_ID: int = 1
    BASE_URL: str = "http://localhost:8000"
    DEFAULT_EXPIRY_DAYS: Optional[int] = None
    CACHE_TTL: int = 86400
    MAX_COLLISION_RETRIES: int = 5
    QR_DEFAULT_SIZE: int = 300
    KEYSPACE: str = "shortly"
    REDIS_HOST_EXTERNAL: str = "localhost"
    REDIS_HOST_INTERNAL: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[str] = None
    CASSANDRA_CLIENT_ID: str = ""
    CASSANDRA_CLIENT_SECRET: str = ""
    ASTRA_BUNDLE_B64: str = ""

    class Config:
        env_file = ".env"


settings = Settings()


def build_id_generator(config: Settings = settings) -> CompactIdGenerator:
    """Build the process-wide short code generator from configuration.

    Raises:
        ConfigurationError: If MACHINE_ID is outside 0-255.
    """
    return CompactIdGenerator(config.MACHINE_ID)
