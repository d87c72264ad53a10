"""
Content-type validation of signed download URLs.

The URL is probed with a one-byte ranged GET (HEAD breaks some signed S3
URLs).  A 403 usually means the signature is not live yet, so it is retried
with a growing delay; after the last 403 the type is inferred from the file
name instead.
"""

from __future__ import annotations

import asyncio
import mimetypes
from collections.abc import Awaitable, Callable

import httpx

from filerelay.core.errors import (
    PlatformAPIError,
    RelayError,
    TimeoutError,
    UnsupportedFileError,
)
from filerelay.core.logging import get_logger

logger = get_logger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        # Images
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/svg+xml",
        "image/webp",
        "image/bmp",
        "image/tiff",
        "image/heic",
        # Video
        "video/mp4",
        "video/x-msvideo",
        "video/quicktime",
        "video/x-ms-wmv",
        "video/x-matroska",
        "video/webm",
        # Audio
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/aac",
        "audio/ogg",
        "audio/flac",
        # Documents
        "application/rtf",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
        "text/rtf",
        "text/csv",
    }
)


def normalize_content_type(content_type: str | None) -> str:
    """``"Image/PNG; charset=x"`` -> ``"image/png"``."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_allowed_content_type(content_type: str | None) -> bool:
    return normalize_content_type(content_type) in ALLOWED_CONTENT_TYPES


def guess_content_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


class FileValidator:
    """Checks that a URL serves an allowed content type.

    Args:
        http: Client used for the probe
        max_attempts: Probes before giving up
        retry_delay: Delay unit; attempt *n* waits ``retry_delay * n``
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        max_attempts: int = 10,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http = http
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _check(self, content_type: str, url: str) -> str:
        normalized = normalize_content_type(content_type)
        if normalized not in ALLOWED_CONTENT_TYPES:
            raise UnsupportedFileError(
                f"Invalid file type: {normalized or 'unknown'}"
            ).with_context(url=url)
        return normalized

    async def validate(self, url: str, filename: str) -> str:
        """Content type served at *url*.

        Raises:
            UnsupportedFileError: The type is not in the allow-list.
            TimeoutError / PlatformAPIError: The URL never answered usefully.
        """
        fallback = guess_content_type(filename)

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.http.get(url, headers={"Range": "bytes=0-0"})
            except httpx.TimeoutException as e:
                error: RelayError = TimeoutError(f"URL validation timed out: {e}", cause=e)
            except httpx.HTTPError as e:
                error = PlatformAPIError(f"URL validation failed: {e}", cause=e)
            else:
                if response.is_success:
                    return self._check(response.headers.get("content-type") or fallback, url)

                if response.status_code == 403:
                    logger.warning("validator.forbidden", attempt=attempt, filename=filename)
                    if attempt < self.max_attempts:
                        await self.sleep(self.retry_delay * attempt)
                        continue
                    logger.warning("validator.bypass", filename=filename, content_type=fallback)
                    return self._check(fallback, url)

                error = PlatformAPIError(
                    f"URL validation failed with status {response.status_code}"
                ).with_context(http_status=response.status_code)

            logger.warning("validator.attempt_failed", attempt=attempt, error=error.message)
            if attempt == self.max_attempts:
                raise error.with_context(url=url)
            await self.sleep(self.retry_delay * attempt)

        raise PlatformAPIError("URL validation failed").with_context(url=url)


__all__ = [
    "FileValidator",
    "ALLOWED_CONTENT_TYPES",
    "is_allowed_content_type",
    "normalize_content_type",
    "guess_content_type",
]
