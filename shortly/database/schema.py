import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from shortly.core.config import settings

URL_PATTERN = re.compile(
    r"^(https?://)"
    r"("
    r"localhost"
    r"|"
    r"([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}"
    r"|"
    r"(\d{1,3}\.){3}\d{1,3}"
    r")"
    r"(:\d{1,5})?"
    r"(/[^\s]*)?$"
)


class ShortenRequest(BaseModel):
    """Request model for creating a new shortened URL.

    Args:
        long_url (str): The original URL to be shortened.
        custom_alias (Optional[str]): Optional custom alias used as short code.
        expiration_days (Optional[int]): Optional number of days until expiry.
    """

    long_url: str = Field(
        ...,
        description="The long URL to shorten",
        examples=["https://www.example.com/very/long/url/path"],
    )
    custom_alias: Optional[str] = Field(
        None,
        min_length=3,
        max_length=20,
        pattern=r"^[a-zA-Z0-9_-]*$",
        description="Custom alias for the short URL",
        examples=["mylink"],
    )
    expiration_days: Optional[int] = Field(
        None,
        gt=0,
        description="Number of days until the URL expires",
        examples=[30],
    )

    @field_validator("long_url")
    @classmethod
    def validate_long_url(cls, value: str) -> str:
        """Only accept http(s) URLs on a domain, localhost or an IPv4 host."""
        if not URL_PATTERN.match(value):
            raise ValueError(
                "Invalid URL format. URL must start with http:// or https://"
            )
        return value

    def has_custom_alias(self) -> bool:
        return bool(self.custom_alias and self.custom_alias.strip())


class ShortenResponse(BaseModel):
    short_url: str
    short_code: str
    long_url: str
    created_at: datetime
    expires_at: Optional[datetime] = None


class UrlStatsResponse(BaseModel):
    short_code: str
    long_url: str
    click_count: int = 0
    created_at: datetime
    expires_at: Optional[datetime] = None


class QrRequest(BaseModel):
    """Request model for generating a QR code.

    Args:
        url (str): The URL to shorten and encode in the QR code.
        size (Optional[int]): Edge length of the PNG in pixels (100-1000).
    """

    url: str = Field(
        ...,
        pattern=r"^https?://.+",
        description="The URL to encode in the QR code",
        examples=["https://www.example.com/very/long/url/path"],
    )
    size: Optional[int] = Field(
        None,
        ge=100,
        le=1000,
        description="Size of the QR code in pixels (width and height)",
        examples=[300],
    )

    def size_or_default(self) -> int:
        return self.size if self.size is not None else settings.QR_DEFAULT_SIZE
