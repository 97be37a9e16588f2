from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="FSUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


@dataclass(frozen=True, slots=True)
class ThumbnailSettings:
    """Immutable snapshot handed to the thumbnail pipeline."""

    enabled: bool = True
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    timeout_s: float | None = 120.0
    staging_dir: Path | None = None


class Settings(BaseSettings):
    """Centralised runtime configuration for the fsup service."""

    model_config = SettingsConfigDict(
        env_prefix="FSUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "fsup"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./fsup.db",
        description="SQLAlchemy compatible DSN for upload task records.",
    )
    database_auto_create: bool = Field(default=True, description="Create missing tables at startup.")
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for background upload tasks.",
    )

    storage_root: Path = Field(default_factory=lambda: Path("data"), description="Root of the local virtual filesystem.")
    storage_read_only: bool = Field(default=False, description="Reject uploads to the storage backend.")
    task_staging_dir: Path | None = Field(
        default=None,
        description="Directory holding upload bodies until their task runs (defaults to <tmp>/fsup-uploads).",
    )

    max_upload_size_bytes: int = Field(default=4 * 1024 * 1024 * 1024, description="Limit for declared upload sizes.")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="immediate",
        description="Backend for upload tasks (inline executes inline; rq schedules via Redis).",
    )

    thumbnails_enabled: bool = Field(default=True, description="Derive thumbnails for uploaded videos.")
    ffmpeg_bin: str = Field(default="ffmpeg")
    ffprobe_bin: str = Field(default="ffprobe")
    thumbnail_timeout_s: float = Field(default=120.0, gt=0, description="Upper bound for one thumbnail derivation.")
    thumbnail_staging_dir: Path | None = Field(default=None, description="Temporary directory for staged thumbnails.")

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend

    @property
    def resolved_task_staging_dir(self) -> Path:
        return self.task_staging_dir or (Path(tempfile.gettempdir()) / "fsup-uploads")

    def thumbnail_settings(self) -> ThumbnailSettings:
        return ThumbnailSettings(
            enabled=self.thumbnails_enabled,
            ffmpeg_bin=self.ffmpeg_bin,
            ffprobe_bin=self.ffprobe_bin,
            timeout_s=self.thumbnail_timeout_s,
            staging_dir=self.thumbnail_staging_dir,
        )


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "FSUP_ENV": "FSUP_ENVIRONMENT",
        "FSUP_DB_URL": "FSUP_DATABASE_URL",
        "FSUP_JOB_BACKEND": "FSUP_JOB_QUEUE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()

    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "ThumbnailSettings", "get_settings"]
