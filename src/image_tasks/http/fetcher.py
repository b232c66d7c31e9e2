"""Bounded HTTP image download with timeout and byte budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from image_tasks.config import DEFAULT_MAX_FILE_SIZE, DEFAULT_SUPPORTED_FORMATS
from image_tasks.imaging.formats import (
    KNOWN_IMAGE_EXTENSIONS,
    extension_from_content_type,
    extension_from_path,
    format_file_size,
    is_supported_mime_type,
)
from image_tasks.orchestrator.errors import (
    FetchTimeoutError,
    InvalidSourceError,
    TooLargeError,
    TransportError,
    UnsupportedContentTypeError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "image-tasks/0.1 (+image variant fetcher)"


@dataclass(slots=True)
class FetchedImage:
    """Downloaded bytes plus the resolved file extension."""

    url: str
    data: bytes
    extension: str
    content_type: str


class RemoteFetcher:
    """HTTP client wrapper enforcing scheme, timeout, content type and size."""

    def __init__(
        self,
        *,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        supported_formats: tuple[str, ...] = DEFAULT_SUPPORTED_FORMATS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.max_file_size_bytes = max_file_size_bytes
        self.supported_formats = supported_formats
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )

    def validate_url(self, url: str) -> None:
        """Reject non-HTTP(S) URLs and unsupported image extensions before any I/O."""

        try:
            parsed = urlparse(url)
        except ValueError as error:
            raise InvalidSourceError(f"malformed URL ({url})") from error
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise InvalidSourceError(f"only http and https URLs are supported ({url})")
        extension = extension_from_path(parsed.path)
        if extension in KNOWN_IMAGE_EXTENSIONS and extension not in self.supported_formats:
            raise InvalidSourceError(f"unsupported image extension .{extension}")

    def fetch(self, url: str) -> FetchedImage:
        """Download ``url`` and return its bytes; raises on any bound violation."""

        self.validate_url(url)
        logger.info("Starting download from: %s", url)
        try:
            with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise UpstreamError(response.status_code)

                content_type = response.headers.get("content-type", "")
                if not is_supported_mime_type(content_type):
                    raise UnsupportedContentTypeError(content_type or "missing")

                declared = _declared_length(response)
                if declared is not None and declared > self.max_file_size_bytes:
                    raise TooLargeError(
                        f"declared {declared} bytes, limit {self.max_file_size_bytes}",
                    )

                data = self._read_bounded(response)
        except httpx.TimeoutException as error:
            logger.warning("Timeout fetching %s", url)
            raise FetchTimeoutError(url) from error
        except httpx.HTTPError as error:
            logger.warning("Transport error fetching %s: %s", url, error)
            raise TransportError(type(error).__name__) from error

        extension = self._resolve_extension(url, content_type)
        logger.info("Download completed: %s (%s)", url, format_file_size(len(data)))
        return FetchedImage(url=url, data=data, extension=extension, content_type=content_type)

    def _read_bounded(self, response: httpx.Response) -> bytes:
        buffer = bytearray()
        for chunk in response.iter_bytes():
            if len(buffer) + len(chunk) > self.max_file_size_bytes:
                raise TooLargeError(
                    f"stream exceeded limit of {self.max_file_size_bytes} bytes",
                )
            buffer.extend(chunk)
        return bytes(buffer)

    def _resolve_extension(self, url: str, content_type: str) -> str:
        extension = extension_from_path(urlparse(url).path)
        if extension in self.supported_formats:
            return extension
        return extension_from_content_type(content_type)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RemoteFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _declared_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None
