from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from fsup.core.auth import Principal
from fsup.core.config import Settings
from fsup.core.errors import AlreadyExists, FsupError, ObjectNotFound, StorageFailure, UploadNotAllowed
from fsup.core.jobs import DetachedTaskRunner, get_job_backend
from fsup.core.logging import get_logger
from fsup.core.storage import FileStream, Obj, Storage, split_path
from fsup.db.models import TaskState, UploadTask
from fsup.thumbnails import derive_thumbnail


class UploadService:
    def __init__(self, settings: Settings, storage: Storage, session: AsyncSession):
        self.settings = settings
        self.storage = storage
        self.session = session
        self.logger = get_logger(component="upload_service")

    async def prepare_destination(self, principal: Principal, raw_path: str, *, overwrite: bool) -> str:
        """Resolve the destination and refuse it before any body bytes are read."""
        path = principal.resolve_path(raw_path)
        if self.storage.config.no_upload:
            raise UploadNotAllowed("Current storage doesn't support upload")
        if not overwrite and await self._exists(path):
            raise AlreadyExists("file exists")
        return path

    async def _exists(self, path: str) -> bool:
        try:
            await asyncio.to_thread(self.storage.get, path)
        except ObjectNotFound:
            return False
        return True

    async def put_directly(self, path: str, stream: FileStream) -> Obj:
        dst_dir, _ = split_path(path)
        obj = await asyncio.to_thread(self.storage.put_directly, dst_dir, stream, True)
        self.logger.info("upload_written", path=path, size=stream.size, mimetype=stream.mimetype)
        return obj

    async def put_as_task(self, path: str, stream: FileStream, principal: Principal) -> UploadTask:
        dst_dir, _ = split_path(path)
        staged = await asyncio.to_thread(self._stage_body, stream)
        task = UploadTask(
            task_id=uuid4().hex,
            name=stream.name,
            dst_dir=dst_dir,
            staged_path=str(staged),
            mimetype=stream.mimetype,
            size_bytes=stream.size,
            modified_time=stream.modified,
            user_id=principal.user_id,
            base_path=principal.base_path,
            state=TaskState.pending,
            progress=0,
        )
        self.session.add(task)
        await self.session.commit()
        self.logger.info("upload_task_created", task_id=task.task_id, path=path)

        try:
            await get_job_backend().enqueue(task.task_id)
        except Exception as exc:
            self.logger.error("upload_task_enqueue_failed", task_id=task.task_id, error=repr(exc))
            staged.unlink(missing_ok=True)
            await self.update_task_state(task.task_id, state=TaskState.failed, error=f"enqueue failed: {exc}")
            raise StorageFailure(f"failed to enqueue upload task {task.task_id}") from exc
        await self.session.refresh(task)
        return task

    def _stage_body(self, stream: FileStream) -> Path:
        staging_dir = self.settings.resolved_task_staging_dir
        staging_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="upload_", suffix=".part", dir=staging_dir)
        with os.fdopen(fd, "wb") as handle:
            shutil.copyfileobj(stream.reader, handle)
        return Path(name)

    def schedule_thumbnail(self, runner: DetachedTaskRunner, path: str, principal: Principal) -> None:
        """Hand a stored video to the thumbnail pipeline without tying it to the current request."""
        runner.spawn(
            derive_thumbnail(
                path,
                principal,
                storage=self.storage,
                settings=self.settings.thumbnail_settings(),
            ),
            name=f"thumbnail:{path}",
        )

    def schedule_task_thumbnail(self, runner: DetachedTaskRunner, task: UploadTask, principal: Principal) -> bool:
        """Schedule derivation for a finished video task whose backend left it to this process."""
        if get_job_backend().derives_thumbnails:
            return False
        if task.state != TaskState.succeeded or not task.mimetype.lower().startswith("video/"):
            return False
        self.schedule_thumbnail(runner, task.target_path, principal)
        return True

    async def get_task(self, task_id: str) -> UploadTask | None:
        return await self.session.get(UploadTask, task_id)

    async def update_task_state(
        self,
        task_id: str,
        *,
        state: TaskState,
        error: str | None = None,
    ) -> UploadTask:
        task = await self.session.get(UploadTask, task_id)
        if not task:
            raise LookupError(task_id)
        task.state = state
        task.error = error
        if state == TaskState.running:
            task.started_at = datetime.now(timezone.utc)
        if state in {TaskState.succeeded, TaskState.failed}:
            task.finished_at = datetime.now(timezone.utc)
        if state == TaskState.succeeded:
            task.progress = 100
        await self.session.commit()
        await self.session.refresh(task)
        return task


async def process_upload_task(
    task_id: str,
    session: AsyncSession,
    settings: Settings,
    storage: Storage,
    *,
    derive_thumbnails: bool = True,
) -> None:
    logger = get_logger(task_id=task_id, job_type="upload")
    service = UploadService(settings, storage, session)
    task = await service.get_task(task_id)
    if not task:
        logger.error("task_not_found")
        return
    if task.state != TaskState.pending:
        logger.info("task_already_processed", state=task.state.value)
        return
    await service.update_task_state(task_id, state=TaskState.running)

    staged = Path(task.staged_path)
    modified = task.modified_time or datetime.now(timezone.utc)
    if modified.tzinfo is None:
        # sqlite hands timestamps back naive
        modified = modified.replace(tzinfo=timezone.utc)
    try:
        with staged.open("rb") as reader:
            stream = FileStream(
                name=task.name,
                size=task.size_bytes,
                modified=modified,
                reader=reader,
                mimetype=task.mimetype,
            )
            await asyncio.to_thread(storage.put_directly, task.dst_dir, stream, True)
    except (FsupError, OSError) as exc:
        logger.warning("upload_task_failed", error=str(exc))
        await service.update_task_state(task_id, state=TaskState.failed, error=str(exc))
        return
    finally:
        staged.unlink(missing_ok=True)

    await service.update_task_state(task_id, state=TaskState.succeeded)
    logger.info("upload_task_succeeded", path=task.target_path)

    if derive_thumbnails and stream.is_video:
        principal = Principal(user_id=task.user_id, base_path=task.base_path)
        await derive_thumbnail(
            task.target_path,
            principal,
            storage=storage,
            settings=settings.thumbnail_settings(),
        )


__all__ = ["UploadService", "process_upload_task"]
