from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_scratch_root() -> Path:
    return Path(tempfile.gettempdir()) / "content-hub"


def _default_queue_concurrency() -> dict[str, int]:
    return {"images": 5, "videos": 2, "audio": 2, "documents": 3}


class Settings(BaseSettings):
    """Runtime configuration for the Content Hub processing core."""

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_HUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Content Hub Processing"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="Service version for metadata and OpenAPI.")
    log_level: str = Field(default="info")
    log_format: Literal["json", "console"] = Field(default="json")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./content_hub.db",
        description="SQLAlchemy compatible DSN.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the processing queues.",
    )

    storage_backend: Literal["local"] = Field(default="local", description="Active blob store implementation.")
    blob_root: Path = Field(default_factory=lambda: Path("blobs"), description="Root for the local blob store.")
    blob_url_expiry_s: int = Field(default=3600, description="Lifetime of retrieval URLs handed to pipelines.")
    scratch_root: Path = Field(
        default_factory=_default_scratch_root,
        description="Parent directory for per-job scratch directories.",
    )

    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="inline",
        description="Backend for processing jobs (inline runs in-process; rq schedules via Redis).",
    )
    job_max_attempts: int = Field(default=3, ge=1, description="Attempts per job before it is kept as failed.")
    job_retry_initial_delay_s: float = Field(default=2.0, ge=0, description="Delay before the second attempt.")
    job_retry_backoff_base: float = Field(default=2.0, ge=1, description="Multiplier applied per further attempt.")
    job_timeout_s: int = Field(default=900, description="Processing timeout after which a job counts as failed.")
    job_timeout_margin_s: float = Field(
        default=30.0,
        ge=0,
        description="Headroom left before job_timeout_s so a pipeline can record its own timeout.",
    )
    queue_connect_timeout_s: float = Field(default=2.0, description="Socket timeout for the queue health check.")
    queue_reconnect_interval_s: float = Field(
        default=5.0,
        ge=0,
        description="Minimum gap between reconnect attempts while the queue is unavailable.",
    )
    queue_concurrency: dict[str, int] = Field(
        default_factory=_default_queue_concurrency,
        description="Worker slots per queue; video work is heavier than image work.",
    )

    fetch_timeout_s: float = Field(default=60.0, description="Timeout for downloading originals.")
    ffprobe_timeout_s: float = Field(default=60.0)
    ffmpeg_timeout_s: float = Field(default=600.0)
    image_max_pixels: int = Field(default=178_956_970, description="Decoder guard against decompression bombs.")
    preview_max_duration_s: float = Field(default=30.0)
    video_thumbnail_position: float = Field(default=0.1, ge=0, le=1)
    stuck_after_s: int = Field(default=3600, description="Age after which a PENDING asset is reported as stuck.")

    @field_validator("queue_concurrency")
    @classmethod
    def _check_concurrency(cls, value: dict[str, int]) -> dict[str, int]:
        for name, slots in value.items():
            if slots < 1:
                raise ValueError(f"queue_concurrency[{name}] must be >= 1")
        return value

    @model_validator(mode="after")
    def _check_relative_cost(self) -> "Settings":
        images = self.queue_concurrency.get("images")
        videos = self.queue_concurrency.get("videos")
        if images is not None and videos is not None and videos > images:
            raise ValueError("video concurrency must not exceed image concurrency")
        return self

    @model_validator(mode="after")
    def _check_job_deadline(self) -> "Settings":
        if self.job_timeout_margin_s >= self.job_timeout_s:
            raise ValueError("job_timeout_margin_s must be smaller than job_timeout_s")
        return self

    @property
    def pipeline_deadline_s(self) -> float:
        """Wall-clock budget for one pipeline run, inside the backend's job timeout."""
        return self.job_timeout_s - self.job_timeout_margin_s

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "immediate":
            return "inline"
        return self.job_queue_backend

    def concurrency_for(self, queue_name: str) -> int:
        return self.queue_concurrency.get(queue_name, 1)

    def retry_delays(self) -> list[float]:
        """Backoff before attempts 2..N, doubling from the initial delay by default."""
        return [
            self.job_retry_initial_delay_s * self.job_retry_backoff_base ** index
            for index in range(self.job_max_attempts - 1)
        ]


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "CONTENT_HUB_ENV": "CONTENT_HUB_ENVIRONMENT",
        "CONTENT_HUB_DB_URL": "CONTENT_HUB_DATABASE_URL",
        "CONTENT_HUB_JOB_BACKEND": "CONTENT_HUB_JOB_QUEUE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    return Settings()


__all__ = ["Settings", "get_settings"]
