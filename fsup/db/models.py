from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import BIGINT
from sqlalchemy.orm import Mapped, mapped_column

from fsup.core.db import Base


class TaskState(str, enum.Enum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class UploadTask(Base):
    __tablename__ = "upload_tasks"
    __table_args__ = (Index("ix_upload_tasks_user_id", "user_id"),)

    task_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    dst_dir: Mapped[str] = mapped_column(String(4096), nullable=False)
    staged_path: Mapped[str] = mapped_column(String(4096), nullable=False)
    mimetype: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BIGINT().with_variant(Integer, "sqlite"), nullable=False, default=0)
    modified_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    base_path: Mapped[str] = mapped_column(String(4096), nullable=False, default="/")
    state: Mapped[TaskState] = mapped_column(Enum(TaskState), default=TaskState.pending, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def target_path(self) -> str:
        return f"{self.dst_dir.rstrip('/')}/{self.name}"


__all__ = ["UploadTask", "TaskState"]
