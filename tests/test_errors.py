from __future__ import annotations

import allure
import pytest

from image_tasks.orchestrator.errors import (
    FAILURE_LABELS,
    DimensionOutOfRangeError,
    ErrorKind,
    FetchTimeoutError,
    ImagePipelineError,
    InvalidImageError,
    InvalidSourceError,
    NoVariantsProducedError,
    NotFoundError,
    TooLargeError,
    TransportError,
    UnsupportedContentTypeError,
    UnsupportedFormatError,
    UpstreamError,
    describe_failure,
)

pytestmark = [
    allure.epic("Image Pipeline"),
    allure.feature("Error Taxonomy"),
]


def test_every_error_kind_has_a_label() -> None:
    assert set(FAILURE_LABELS) == set(ErrorKind)


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (InvalidSourceError("x"), ErrorKind.INVALID_SOURCE),
        (UnsupportedContentTypeError("text/html"), ErrorKind.UNSUPPORTED_CONTENT_TYPE),
        (TooLargeError("x"), ErrorKind.TOO_LARGE),
        (FetchTimeoutError("x"), ErrorKind.TIMEOUT),
        (TransportError("ConnectError"), ErrorKind.TRANSPORT_ERROR),
        (UpstreamError(502), ErrorKind.UPSTREAM_ERROR),
        (InvalidImageError("x"), ErrorKind.INVALID_IMAGE),
        (UnsupportedFormatError("gif"), ErrorKind.UNSUPPORTED_FORMAT),
        (DimensionOutOfRangeError("x"), ErrorKind.DIMENSION_OUT_OF_RANGE),
        (NotFoundError("/tmp/a.jpg"), ErrorKind.NOT_FOUND),
        (NoVariantsProducedError("x"), ErrorKind.NO_VARIANTS_PRODUCED),
        (ImagePipelineError(), ErrorKind.UNEXPECTED),
    ],
)
def test_each_exception_carries_its_kind(error: ImagePipelineError, kind: ErrorKind) -> None:
    assert error.kind == kind
    assert describe_failure(error).startswith(FAILURE_LABELS[kind])


def test_messages_are_label_plus_detail() -> None:
    assert describe_failure(NotFoundError("/tmp/a.jpg")) == "File not found: /tmp/a.jpg"
    assert describe_failure(UnsupportedFormatError("gif")) == "Unsupported format: gif"
    assert describe_failure(UpstreamError(503)) == "Upstream returned an error: HTTP 503"
    assert describe_failure(ImagePipelineError()) == "Unexpected error while processing image"
