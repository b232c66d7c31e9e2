"""Content-addressed file storage for resized image variants."""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

from image_tasks.orchestrator.errors import NotFoundError

logger = logging.getLogger(__name__)


class ContentStore:
    """Stores variant files as ``{root}/{task_id}/{resolution}/{md5}.{ext}``.

    Paths are keyed by task id, so concurrent writers for different tasks
    never touch the same directory.  Writing identical bytes for the same
    task and resolution lands on the same path and simply overwrites it.
    """

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def save(self, *, task_id: str, resolution: str, data: bytes, extension: str) -> Path:
        """Persist ``data`` and return its content-addressed path."""

        target_dir = self.output_path(task_id=task_id, resolution=resolution)
        target_dir.mkdir(parents=True, exist_ok=True)
        digest = content_hash(data)
        path = target_dir / f"{digest}.{extension.lstrip('.').lower()}"
        path.write_bytes(data)
        logger.info("Image saved: %s (%d bytes)", path, len(data))
        return path

    def read(self, path: Path | str) -> bytes:
        target = Path(path)
        if not target.is_file():
            raise NotFoundError(str(path))
        try:
            return target.read_bytes()
        except FileNotFoundError as error:
            raise NotFoundError(str(path)) from error

    def exists(self, path: Path | str) -> bool:
        return Path(path).is_file()

    def delete(self, path: Path | str) -> None:
        """Remove one file; a missing file is not an error."""

        try:
            Path(path).unlink(missing_ok=True)
        except OSError as error:
            logger.warning("Could not delete %s: %s", path, error)
            return
        logger.info("File deleted: %s", path)

    def purge_task(self, task_id: str) -> None:
        """Remove the whole output tree of one task."""

        task_dir = self.output_dir / _safe_segment(task_id, name="task_id")
        if not task_dir.exists():
            return
        shutil.rmtree(task_dir, ignore_errors=True)
        logger.info("Task directory cleaned up: %s", task_dir)

    def output_path(self, *, task_id: str, resolution: str) -> Path:
        return (
            self.output_dir
            / _safe_segment(task_id, name="task_id")
            / _safe_segment(resolution, name="resolution")
        )


def content_hash(data: bytes) -> str:
    """128-bit content hash used as the variant file name."""

    return hashlib.md5(data).hexdigest()  # noqa: S324


def _safe_segment(value: str, *, name: str) -> str:
    if not value or value in {".", ".."} or "/" in value or "\\" in value:
        raise ValueError(f"Invalid {name} for storage path: {value!r}")
    return value
