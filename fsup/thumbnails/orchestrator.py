from __future__ import annotations

import asyncio
import os
import posixpath
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from fsup.core.auth import Principal
from fsup.core.config import ThumbnailSettings
from fsup.core.errors import FsupError, ObjectNotFound, PublishFailed, StorageFailure
from fsup.core.logging import get_logger
from fsup.core.storage import FileStream, Storage, split_path

from .strategy import extract_thumbnail
from .validator import validate_webp

THUMBNAIL_DIR_NAME = ".thumbnails"
THUMBNAIL_EXTENSION = ".webp"
THUMBNAIL_MIMETYPE = "image/webp"


@dataclass(frozen=True, slots=True)
class ThumbnailTask:
    source_path: str
    principal: Principal
    target_dir: str
    target_name: str

    @classmethod
    def for_source(cls, source_path: str, principal: Principal) -> "ThumbnailTask":
        parent, name = split_path(source_path)
        base, _ = posixpath.splitext(name)
        return cls(
            source_path=posixpath.join(parent, name),
            principal=principal,
            target_dir=posixpath.join(parent, THUMBNAIL_DIR_NAME),
            target_name=base + THUMBNAIL_EXTENSION,
        )

    @property
    def target_path(self) -> str:
        return posixpath.join(self.target_dir, self.target_name)


async def _thumbnail_exists(storage: Storage, path: str) -> bool:
    try:
        await asyncio.to_thread(storage.get, path)
    except ObjectNotFound:
        return False
    return True


def _stage_artifact(settings: ThumbnailSettings) -> Path:
    staging_dir = settings.staging_dir
    if staging_dir is not None:
        staging_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix="video_thumb_", suffix=THUMBNAIL_EXTENSION, dir=staging_dir)
    os.close(fd)
    return Path(name)


def _publish(storage: Storage, task: ThumbnailTask, staged: Path) -> None:
    try:
        storage.make_dir(task.target_dir, lazy_cache=True)
        with staged.open("rb") as reader:
            stream = FileStream(
                name=task.target_name,
                size=os.fstat(reader.fileno()).st_size,
                modified=datetime.now(timezone.utc),
                reader=reader,
                mimetype=THUMBNAIL_MIMETYPE,
            )
            storage.put_directly(task.target_dir, stream, overwrite=True)
    except (StorageFailure, OSError) as exc:
        raise PublishFailed(f"failed to publish {task.target_path}: {exc}") from exc


async def _derive(task: ThumbnailTask, storage: Storage, settings: ThumbnailSettings) -> bool:
    logger = get_logger(component="thumbnail", source=task.source_path, user=task.principal.user_id)

    source = await asyncio.to_thread(storage.get, task.source_path)
    if source.local_path is None:
        logger.warning("thumbnail_source_not_local")
        return False

    if await _thumbnail_exists(storage, task.target_path):
        logger.info("thumbnail_exists_skipped", target=task.target_path)
        return False

    # no await between creating the staged file and entering the try
    staged = _stage_artifact(settings)
    try:
        attempt = await extract_thumbnail(source.local_path, staged, settings)
        width, height = await asyncio.to_thread(validate_webp, staged)
        await asyncio.to_thread(_publish, storage, task, staged)
    finally:
        try:
            staged.unlink(missing_ok=True)
        except OSError as cleanup_error:
            logger.warning("thumbnail_staging_cleanup_failed", path=str(staged), error=str(cleanup_error))

    logger.info(
        "thumbnail_published",
        target=task.target_path,
        strategy=attempt.value,
        width_px=width,
        height_px=height,
    )
    return True


async def derive_thumbnail(
    source_path: str,
    principal: Principal,
    *,
    storage: Storage,
    settings: ThumbnailSettings,
) -> bool:
    """Generate ``.thumbnails/<base>.webp`` next to a stored video.

    Fire-and-forget: every outcome is logged and none is raised, so the upload that triggered the
    derivation is unaffected. The check-then-publish sequence takes no lock; concurrent runs for
    one source may both publish, and the last write wins. A timeout cancels the derivation but
    cannot stop a publish already running in its worker thread; that write may still complete.

    Returns:
        ``True`` when a thumbnail was published, ``False`` when skipped or failed.
    """
    task = ThumbnailTask.for_source(source_path, principal)
    logger = get_logger(component="thumbnail", source=task.source_path, user=principal.user_id)
    if not settings.enabled:
        return False
    try:
        return await asyncio.wait_for(_derive(task, storage, settings), settings.timeout_s)
    except asyncio.TimeoutError:
        logger.warning("thumbnail_timed_out", timeout_s=settings.timeout_s)
    except FsupError as exc:
        logger.warning("thumbnail_failed", error_type=type(exc).__name__, error=str(exc))
    except Exception:
        logger.exception("thumbnail_crashed")
    return False


__all__ = [
    "THUMBNAIL_DIR_NAME",
    "THUMBNAIL_EXTENSION",
    "THUMBNAIL_MIMETYPE",
    "ThumbnailTask",
    "derive_thumbnail",
]
