"""Supported image formats and MIME helpers."""

from __future__ import annotations

from pathlib import PurePosixPath

SUPPORTED_MIME_TYPES: tuple[str, ...] = ("image/jpeg", "image/jpg", "image/png", "image/webp")
DEFAULT_EXTENSION = "jpg"

# Extensions that name an image but are not accepted; URLs ending in these are
# rejected before download.
KNOWN_IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {"jpg", "jpeg", "png", "webp", "gif", "bmp", "tif", "tiff", "svg", "ico", "heic", "avif"},
)

# Pillow names multi-picture JPEGs (camera MPF files) "mpo".
FORMAT_ALIASES: dict[str, str] = {"mpo": "jpeg"}


def normalize_format(value: str) -> str:
    lowered = value.strip().lower()
    return FORMAT_ALIASES.get(lowered, lowered)


def is_supported_format(value: str, supported_formats: tuple[str, ...]) -> bool:
    return normalize_format(value) in supported_formats


def is_supported_mime_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    lowered = content_type.lower()
    return any(mime in lowered for mime in SUPPORTED_MIME_TYPES)


def extension_from_path(path: str) -> str:
    """Lowercase trailing extension without the dot, or an empty string."""

    suffix = PurePosixPath(path).suffix
    return suffix[1:].lower() if suffix else ""


def extension_from_content_type(content_type: str | None) -> str:
    if not content_type:
        return DEFAULT_EXTENSION
    lowered = content_type.lower()
    if "png" in lowered:
        return "png"
    if "webp" in lowered:
        return "webp"
    return DEFAULT_EXTENSION


def format_file_size(size_bytes: int) -> str:
    """Human readable size, for log lines."""

    if size_bytes <= 0:
        return "0 B"
    value = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if value < 1024:  # noqa: PLR2004
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"
