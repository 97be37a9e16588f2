from __future__ import annotations

import posixpath

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import UploadFile

from fsup.api import deps
from fsup.core.auth import Principal
from fsup.core.config import Settings
from fsup.core.errors import AlreadyExists, FsupError, PermissionDenied, UploadNotAllowed, UploadTooLarge
from fsup.core.jobs import DetachedTaskRunner
from fsup.core.storage import FileStream
from fsup.ingest.transport import RequestBody
from fsup.ingest.upload import UploadMetadata, build_file_stream, parse_content_length, parse_upload_headers
from fsup.services.upload_service import UploadService

from . import schemas
from .routes_tasks import task_info


router = APIRouter(prefix="/fs", tags=["fs"])


def _parse_metadata(request: Request) -> UploadMetadata:
    try:
        return parse_upload_headers(request.headers)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def _prepare(service: UploadService, principal: Principal, metadata: UploadMetadata) -> str:
    try:
        return await service.prepare_destination(principal, metadata.path, overwrite=metadata.overwrite)
    except (PermissionDenied, AlreadyExists, UploadNotAllowed) as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _check_size(size: int, settings: Settings) -> None:
    if size > settings.max_upload_size_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="upload_too_large")


async def _write(
    service: UploadService,
    runner: DetachedTaskRunner,
    principal: Principal,
    path: str,
    stream: FileStream,
) -> schemas.UploadResponse:
    try:
        if stream.as_task:
            task = await service.put_as_task(path, stream, principal)
            service.schedule_task_thumbnail(runner, task, principal)
            return schemas.UploadResponse(data=schemas.UploadData(task=task_info(task)))
        await service.put_directly(path, stream)
    except FsupError as exc:
        service.logger.warning("upload_failed", path=path, error=str(exc))
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    if stream.is_video:
        service.schedule_thumbnail(runner, path, principal)
    return schemas.UploadResponse()


@router.put("/put", response_model=schemas.UploadResponse, summary="Upload a file from the raw request body")
async def fs_stream(
    request: Request,
    service: deps.UploadServiceDependency,
    principal: deps.PrincipalDependency,
    runner: deps.RunnerDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.UploadResponse:
    body = RequestBody(request)
    try:
        metadata = _parse_metadata(request)
        path = await _prepare(service, principal, metadata)
        try:
            size = parse_content_length(request.headers.get("Content-Length"))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        _check_size(size, settings)

        try:
            reader = await body.spool(max_bytes=settings.max_upload_size_bytes)
        except UploadTooLarge as exc:
            raise HTTPException(status_code=exc.status_code, detail="upload_too_large") from exc
        stream = build_file_stream(
            metadata,
            name=posixpath.basename(path),
            size=size or body.bytes_read,
            reader=reader,
            declared_mimetype=request.headers.get("Content-Type"),
        )
        return await _write(service, runner, principal, path, stream)
    finally:
        await body.drain()


@router.put("/form", response_model=schemas.UploadResponse, summary="Upload a file from a multipart form")
async def fs_form(
    request: Request,
    service: deps.UploadServiceDependency,
    principal: deps.PrincipalDependency,
    runner: deps.RunnerDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.UploadResponse:
    body = RequestBody(request)
    try:
        metadata = _parse_metadata(request)
        path = await _prepare(service, principal, metadata)

        form = await body.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="file form field is required")
        size = upload.size if upload.size is not None else 0
        _check_size(size, settings)

        stream = build_file_stream(
            metadata,
            name=posixpath.basename(path),
            size=size,
            reader=upload.file,
            declared_mimetype=upload.content_type,
        )
        return await _write(service, runner, principal, path, stream)
    finally:
        await body.drain()


__all__ = ["router"]
