from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    pending_derivations: int = Field(default=0, description="Thumbnail derivations still running.")


class EnvCheckResponse(BaseModel):
    ffmpeg: bool
    ffprobe: bool


class TaskInfo(BaseModel):
    id: str
    name: str = Field(description="Human readable task label, e.g. 'upload clip.mp4 to [/videos]'.")
    state: str
    progress: int = Field(ge=0, le=100)
    error: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class UploadData(BaseModel):
    task: TaskInfo


class Envelope(BaseModel):
    code: int = 200
    message: str = "success"
    data: Optional[Any] = None


class UploadResponse(Envelope):
    data: Optional[UploadData] = None


class TaskResponse(Envelope):
    data: TaskInfo


__all__ = [
    "HealthResponse",
    "EnvCheckResponse",
    "TaskInfo",
    "UploadData",
    "Envelope",
    "UploadResponse",
    "TaskResponse",
]
