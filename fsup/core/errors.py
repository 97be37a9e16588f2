"""Error taxonomy shared by the ingest path and the thumbnail pipeline."""

from __future__ import annotations

from fastapi import status


class FsupError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


class PermissionDenied(FsupError):
    status_code = status.HTTP_403_FORBIDDEN


class AlreadyExists(FsupError):
    status_code = status.HTTP_403_FORBIDDEN


class ObjectNotFound(FsupError):
    status_code = status.HTTP_404_NOT_FOUND


class UploadNotAllowed(FsupError):
    status_code = status.HTTP_405_METHOD_NOT_ALLOWED


class UploadTooLarge(FsupError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class StorageFailure(FsupError):
    pass


class ExtractionFailed(FsupError):
    """An external codec tool failed to start, exited non-zero, or timed out."""

    def __init__(self, message: str, *, output: str = "", returncode: int | None = None):
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class EmptyArtifact(FsupError):
    pass


class CorruptArtifact(FsupError):
    pass


class PublishFailed(FsupError):
    pass


__all__ = [
    "FsupError",
    "PermissionDenied",
    "AlreadyExists",
    "ObjectNotFound",
    "UploadNotAllowed",
    "UploadTooLarge",
    "StorageFailure",
    "ExtractionFailed",
    "EmptyArtifact",
    "CorruptArtifact",
    "PublishFailed",
]
