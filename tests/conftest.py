"""Shared test fixtures."""

from __future__ import annotations

import io
import os
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from PIL import Image

from image_tasks.imaging.content_store import ContentStore
from image_tasks.orchestrator.queue import SQLiteJobQueue
from image_tasks.orchestrator.repository import SQLiteTaskRepository

ImageFactory = Callable[..., bytes]


def render_image(
    width: int,
    height: int,
    *,
    image_format: str = "JPEG",
    color: tuple[int, int, int] = (200, 60, 30),
) -> bytes:
    image = Image.new("RGB", (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep IMAGE_TASKS_* variables from the developer shell out of tests."""

    for name in list(os.environ):
        if name.startswith("IMAGE_TASKS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def image_bytes() -> ImageFactory:
    return render_image


@pytest.fixture()
def store(tmp_path: Path) -> ContentStore:
    return ContentStore(tmp_path / "output")


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[SQLiteTaskRepository]:
    repo = SQLiteTaskRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def job_queue(db_path: Path, repository: SQLiteTaskRepository) -> Iterator[SQLiteJobQueue]:
    queue = SQLiteJobQueue(db_path)
    try:
        yield queue
    finally:
        queue.close()
