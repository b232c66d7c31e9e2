"""Error taxonomy for the image pipeline and the task store."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Normalized failure kinds recorded on failed tasks."""

    INVALID_SOURCE = "invalid_source"
    UNSUPPORTED_CONTENT_TYPE = "unsupported_content_type"
    TOO_LARGE = "too_large"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    UPSTREAM_ERROR = "upstream_error"
    INVALID_IMAGE = "invalid_image"
    UNSUPPORTED_FORMAT = "unsupported_format"
    DIMENSION_OUT_OF_RANGE = "dimension_out_of_range"
    NOT_FOUND = "not_found"
    NO_VARIANTS_PRODUCED = "no_variants_produced"
    UNEXPECTED = "unexpected"


FAILURE_LABELS: dict[ErrorKind, str] = {
    ErrorKind.INVALID_SOURCE: "Invalid image source",
    ErrorKind.UNSUPPORTED_CONTENT_TYPE: "Unsupported content type",
    ErrorKind.TOO_LARGE: "Image exceeds download size limit",
    ErrorKind.TIMEOUT: "Download timed out",
    ErrorKind.TRANSPORT_ERROR: "Download failed",
    ErrorKind.UPSTREAM_ERROR: "Upstream returned an error",
    ErrorKind.INVALID_IMAGE: "Invalid image",
    ErrorKind.UNSUPPORTED_FORMAT: "Unsupported format",
    ErrorKind.DIMENSION_OUT_OF_RANGE: "Image dimensions out of range",
    ErrorKind.NOT_FOUND: "File not found",
    ErrorKind.NO_VARIANTS_PRODUCED: "No image variants could be created",
    ErrorKind.UNEXPECTED: "Unexpected error while processing image",
}


class ImagePipelineError(Exception):
    """Base class for failures that end a task as FAILED.

    ``detail`` is composed by this package, never copied from third-party
    exception text, so it is safe to show to the task owner.
    """

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(describe_failure_kind(self.kind, detail))


class InvalidSourceError(ImagePipelineError):
    kind = ErrorKind.INVALID_SOURCE


class UnsupportedContentTypeError(ImagePipelineError):
    kind = ErrorKind.UNSUPPORTED_CONTENT_TYPE


class TooLargeError(ImagePipelineError):
    kind = ErrorKind.TOO_LARGE


class FetchTimeoutError(ImagePipelineError):
    kind = ErrorKind.TIMEOUT


class TransportError(ImagePipelineError):
    kind = ErrorKind.TRANSPORT_ERROR


class UpstreamError(ImagePipelineError):
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class InvalidImageError(ImagePipelineError):
    kind = ErrorKind.INVALID_IMAGE


class UnsupportedFormatError(ImagePipelineError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class DimensionOutOfRangeError(ImagePipelineError):
    kind = ErrorKind.DIMENSION_OUT_OF_RANGE


class NotFoundError(ImagePipelineError):
    kind = ErrorKind.NOT_FOUND


class NoVariantsProducedError(ImagePipelineError):
    kind = ErrorKind.NO_VARIANTS_PRODUCED


class TaskNotFoundError(LookupError):
    """Raised by the task repository for unknown task ids."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvalidTransitionError(RuntimeError):
    """Raised when a status update would leave a terminal state."""


class InvalidJobPayloadError(ValueError):
    """Raised for queue payloads that can never be processed."""


def describe_failure_kind(kind: ErrorKind, detail: str = "") -> str:
    label = FAILURE_LABELS[kind]
    return f"{label}: {detail}" if detail else label


def describe_failure(error: ImagePipelineError) -> str:
    """Concise, user-facing message for a failed task."""

    return describe_failure_kind(error.kind, error.detail)
