from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fsup.core.auth import Principal, get_principal
from fsup.core.config import Settings, get_settings
from fsup.core.jobs import DetachedTaskRunner
from fsup.core.storage import Storage
from fsup.services.upload_service import UploadService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_storage(request: Request) -> Storage:
    storage: Storage = request.app.state.storage
    return storage


def get_runner(request: Request) -> DetachedTaskRunner:
    runner: DetachedTaskRunner = request.app.state.runner
    return runner


def get_app_settings() -> Settings:
    return get_settings()


async def get_upload_service(
    session: AsyncSession = Depends(get_session),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[UploadService]:
    service = UploadService(settings, storage, session)
    yield service


UploadServiceDependency = Annotated[UploadService, Depends(get_upload_service)]
PrincipalDependency = Annotated[Principal, Depends(get_principal)]
RunnerDependency = Annotated[DetachedTaskRunner, Depends(get_runner)]


__all__ = [
    "get_session",
    "get_storage",
    "get_runner",
    "get_app_settings",
    "get_upload_service",
    "UploadServiceDependency",
    "PrincipalDependency",
    "RunnerDependency",
]
