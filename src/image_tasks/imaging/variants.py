"""Decode, validate and resize one source image into configured widths."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from enum import Enum

from PIL import Image

from image_tasks.config import DEFAULT_RESOLUTIONS, DEFAULT_SUPPORTED_FORMATS
from image_tasks.imaging.content_store import ContentStore
from image_tasks.imaging.formats import is_supported_format, normalize_format
from image_tasks.orchestrator.errors import (
    DimensionOutOfRangeError,
    InvalidImageError,
    NoVariantsProducedError,
    UnsupportedFormatError,
)
from image_tasks.orchestrator.models import ImageVariant

logger = logging.getLogger(__name__)

VARIANT_EXTENSION = "jpg"


@dataclass(slots=True, frozen=True)
class ImageInfo:
    """Header metadata of a decoded image."""

    width: int
    height: int
    format: str


class VariantOutcomeStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class VariantOutcome:
    """Result of one resolution, independent of the others."""

    resolution: str
    status: VariantOutcomeStatus
    variant: ImageVariant | None = None
    reason: str | None = None

    def describe(self) -> str:
        if self.status == VariantOutcomeStatus.CREATED:
            return f"{self.resolution}: created"
        return f"{self.resolution}: {self.status.value} ({self.reason})"


@dataclass(slots=True)
class VariantBatch:
    """Collected outcomes for all configured resolutions."""

    source: ImageInfo
    outcomes: list[VariantOutcome] = field(default_factory=list)

    @property
    def variants(self) -> list[ImageVariant]:
        return [outcome.variant for outcome in self.outcomes if outcome.variant is not None]

    def summary(self) -> str:
        return "; ".join(outcome.describe() for outcome in self.outcomes)


class VariantEngine:
    """Produces one stored JPEG variant per configured target width."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: ContentStore,
        resolutions: tuple[str, ...] = DEFAULT_RESOLUTIONS,
        supported_formats: tuple[str, ...] = DEFAULT_SUPPORTED_FORMATS,
        jpeg_quality: int = 90,
        min_dimension: int = 100,
        max_dimension: int = 10_000,
    ) -> None:
        self.store = store
        self.resolutions = resolutions
        self.supported_formats = supported_formats
        self.jpeg_quality = jpeg_quality
        self.min_dimension = min_dimension
        self.max_dimension = max_dimension

    def inspect(self, data: bytes) -> ImageInfo:
        """Read width, height and format without validating them."""

        image = _open_image(data)
        return _image_info(image)

    def create_variants(self, *, task_id: str, data: bytes) -> VariantBatch:
        """Validate ``data`` and store every resolution it is wide enough for.

        Raises ``NoVariantsProducedError`` when no resolution could be stored.
        """

        image, info = self._open_validated(data)
        logger.info(
            "Original image: %dx%d, format: %s",
            info.width,
            info.height,
            info.format,
        )

        batch = VariantBatch(source=info)
        for resolution in self.resolutions:
            batch.outcomes.append(
                self._create_one(task_id=task_id, image=image, info=info, resolution=resolution),
            )

        if not batch.variants:
            raise NoVariantsProducedError(batch.summary())
        return batch

    def _create_one(
        self,
        *,
        task_id: str,
        image: Image.Image,
        info: ImageInfo,
        resolution: str,
    ) -> VariantOutcome:
        target_width = int(resolution)
        if info.width < target_width:
            logger.warning(
                "Skipping resolution %spx - original image is smaller (%dpx)",
                resolution,
                info.width,
            )
            return VariantOutcome(
                resolution=resolution,
                status=VariantOutcomeStatus.SKIPPED,
                reason=f"original width {info.width}px",
            )

        try:
            encoded = self._render(image, target_width=target_width)
            path = self.store.save(
                task_id=task_id,
                resolution=resolution,
                data=encoded,
                extension=VARIANT_EXTENSION,
            )
        except Exception as error:  # noqa: BLE001
            logger.error("Error creating %spx variant: %s", resolution, error)
            return VariantOutcome(
                resolution=resolution,
                status=VariantOutcomeStatus.FAILED,
                reason=type(error).__name__,
            )

        logger.info("Variant created: %spx -> %s", resolution, path)
        return VariantOutcome(
            resolution=resolution,
            status=VariantOutcomeStatus.CREATED,
            variant=ImageVariant(resolution=resolution, path=str(path)),
        )

    def _render(self, image: Image.Image, *, target_width: int) -> bytes:
        width, height = image.size
        target_height = max(1, round(height * target_width / width))
        if (target_width, target_height) == (width, height):
            resized = image.copy()
        else:
            resized = image.resize((target_width, target_height), Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        resized.save(buffer, format="JPEG", quality=self.jpeg_quality)
        return buffer.getvalue()

    def _open_validated(self, data: bytes) -> tuple[Image.Image, ImageInfo]:
        image = _open_image(data)
        info = _image_info(image)

        if not is_supported_format(info.format, self.supported_formats):
            raise UnsupportedFormatError(info.format)
        if min(info.width, info.height) < self.min_dimension:
            raise DimensionOutOfRangeError(
                f"{info.width}x{info.height}px is below the "
                f"{self.min_dimension}x{self.min_dimension}px minimum",
            )
        if max(info.width, info.height) > self.max_dimension:
            raise DimensionOutOfRangeError(
                f"{info.width}x{info.height}px exceeds the "
                f"{self.max_dimension}x{self.max_dimension}px maximum",
            )

        try:
            image.load()
            rgb = image if image.mode == "RGB" else image.convert("RGB")
        except (OSError, ValueError) as error:
            raise InvalidImageError("image data is truncated or corrupt") from error
        return rgb, info


def _open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
    except (Image.DecompressionBombError, OSError) as error:
        raise InvalidImageError("could not determine image format") from error
    if not image.format:
        raise InvalidImageError("could not determine image format")
    return image


def _image_info(image: Image.Image) -> ImageInfo:
    width, height = image.size
    return ImageInfo(width=width, height=height, format=normalize_format(image.format or ""))
