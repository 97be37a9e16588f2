from __future__ import annotations

import asyncio

from fsup.core.config import get_settings
from fsup.core.db import create_engine, create_session_factory
from fsup.core.logging import configure_logging
from fsup.core.storage import get_storage
from fsup.services.upload_service import process_upload_task


def run_upload_task(task_id: str, derive_thumbnails: bool = True) -> None:
    """Entry-point executed by the job backend (RQ or inline).

    The inline backend passes ``derive_thumbnails=False`` and leaves derivation to the
    request process, so the upload response does not wait on ffmpeg.
    """

    settings = get_settings()
    configure_logging(settings.log_level)
    storage = get_storage(settings)

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    async def _runner() -> None:
        try:
            async with session_factory() as session:
                await process_upload_task(
                    task_id, session, settings, storage, derive_thumbnails=derive_thumbnails
                )
        finally:
            await engine.dispose()

    asyncio.run(_runner())


__all__ = ["run_upload_task"]
