"""Runtime configuration for the image task pipeline."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_RESOLUTIONS: tuple[str, ...] = ("1024", "800")
DEFAULT_SUPPORTED_FORMATS: tuple[str, ...] = ("jpg", "jpeg", "png", "webp")
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


@dataclass(slots=True)
class StorageSettings:
    """Content store settings."""

    output_dir: Path = Path("./output")


@dataclass(slots=True)
class ImagingSettings:
    """Variant engine settings."""

    resolutions: tuple[str, ...] = DEFAULT_RESOLUTIONS
    supported_formats: tuple[str, ...] = DEFAULT_SUPPORTED_FORMATS
    jpeg_quality: int = 90
    min_dimension: int = 100
    max_dimension: int = 10_000


@dataclass(slots=True)
class DownloadSettings:
    """Remote fetcher bounds."""

    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class WorkerSettings:
    """Queue consumer and worker pool settings."""

    worker_id: str = field(default_factory=lambda: _default_worker_id())
    concurrency: int = 2
    poll_interval_seconds: float = 1.0
    job_max_attempts: int = 3
    retry_base_seconds: int = 5
    retry_max_seconds: int = 300
    stale_claim_seconds: int = 900
    orphan_after_seconds: int = 300


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".image_tasks.db")
    log_level: str = "INFO"
    storage: StorageSettings = field(default_factory=StorageSettings)
    imaging: ImagingSettings = field(default_factory=ImagingSettings)
    download: DownloadSettings = field(default_factory=DownloadSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("IMAGE_TASKS_DB_PATH", ".image_tasks.db")),
            log_level=os.getenv("IMAGE_TASKS_LOG_LEVEL", "INFO").strip().upper(),
            storage=StorageSettings(
                output_dir=Path(os.getenv("IMAGE_TASKS_OUTPUT_DIRECTORY", "./output")),
            ),
            imaging=ImagingSettings(
                resolutions=_env_csv("IMAGE_TASKS_RESOLUTIONS", DEFAULT_RESOLUTIONS),
                supported_formats=tuple(
                    value.lower()
                    for value in _env_csv(
                        "IMAGE_TASKS_SUPPORTED_FORMATS",
                        DEFAULT_SUPPORTED_FORMATS,
                    )
                ),
                jpeg_quality=int(os.getenv("IMAGE_TASKS_JPEG_QUALITY", "90")),
            ),
            download=DownloadSettings(
                max_file_size_bytes=int(
                    os.getenv("IMAGE_TASKS_MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE)),
                ),
                timeout_seconds=float(
                    os.getenv("IMAGE_TASKS_DOWNLOAD_TIMEOUT_SECONDS", "30"),
                ),
            ),
            worker=WorkerSettings(
                worker_id=os.getenv("IMAGE_TASKS_WORKER_ID", "").strip() or _default_worker_id(),
                concurrency=int(os.getenv("IMAGE_TASKS_WORKER_CONCURRENCY", "2")),
                poll_interval_seconds=float(
                    os.getenv("IMAGE_TASKS_WORKER_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                job_max_attempts=int(os.getenv("IMAGE_TASKS_JOB_MAX_ATTEMPTS", "3")),
                retry_base_seconds=int(os.getenv("IMAGE_TASKS_JOB_RETRY_BASE_SECONDS", "5")),
                retry_max_seconds=int(os.getenv("IMAGE_TASKS_JOB_RETRY_MAX_SECONDS", "300")),
                stale_claim_seconds=int(os.getenv("IMAGE_TASKS_STALE_CLAIM_SECONDS", "900")),
                orphan_after_seconds=int(os.getenv("IMAGE_TASKS_ORPHAN_AFTER_SECONDS", "300")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if not self.imaging.resolutions:
            raise ValueError("IMAGE_TASKS_RESOLUTIONS must list at least one target width.")
        for label in self.imaging.resolutions:
            if not label.isdigit() or int(label) <= 0:
                raise ValueError(
                    f"Invalid IMAGE_TASKS_RESOLUTIONS entry: {label!r}. "
                    "Expected a positive integer width in pixels.",
                )
        if len(set(self.imaging.resolutions)) != len(self.imaging.resolutions):
            raise ValueError("IMAGE_TASKS_RESOLUTIONS must not contain duplicates.")
        if not self.imaging.supported_formats:
            raise ValueError("IMAGE_TASKS_SUPPORTED_FORMATS must not be empty.")
        if not 1 <= self.imaging.jpeg_quality <= 100:  # noqa: PLR2004
            raise ValueError("IMAGE_TASKS_JPEG_QUALITY must be between 1 and 100.")
        if self.download.max_file_size_bytes <= 0:
            raise ValueError("IMAGE_TASKS_MAX_FILE_SIZE must be > 0.")
        if self.download.timeout_seconds <= 0:
            raise ValueError("IMAGE_TASKS_DOWNLOAD_TIMEOUT_SECONDS must be > 0.")
        if self.worker.concurrency <= 0:
            raise ValueError("IMAGE_TASKS_WORKER_CONCURRENCY must be > 0.")
        if self.worker.job_max_attempts <= 0:
            raise ValueError("IMAGE_TASKS_JOB_MAX_ATTEMPTS must be > 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("IMAGE_TASKS_WORKER_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.orphan_after_seconds < 0:
            raise ValueError("IMAGE_TASKS_ORPHAN_AFTER_SECONDS must be >= 0.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid IMAGE_TASKS_LOG_LEVEL: {self.log_level!r}")


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        token = part.strip()
        if not token or token in seen:
            continue
        seen.add(token)
        values.append(token)
    return tuple(values)


def _default_worker_id() -> str:
    return f"worker-{socket.gethostname()}-{os.getpid()}"
