"""Normalisation of upload metadata shared by the raw-stream and multipart transports."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Mapping, Optional
from urllib.parse import unquote

from fsup.core.storage import FileStream

HASH_HEADERS = {
    "md5": "X-File-Md5",
    "sha1": "X-File-Sha1",
    "sha256": "X-File-Sha256",
}

DEFAULT_MIMETYPE = "application/octet-stream"


@dataclass(slots=True)
class UploadMetadata:
    """Client supplied metadata common to both upload transports."""

    path: str
    overwrite: bool = True
    as_task: bool = False
    hashes: Dict[str, str] = field(default_factory=dict)
    modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def decode_file_path(raw: Optional[str]) -> str:
    """Percent-decode the ``File-Path`` header.

    Raises:
        ValueError: The header is missing or decodes to invalid UTF-8.
    """
    if not raw:
        raise ValueError("File-Path header is required")
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError as exc:
        raise ValueError(f"invalid File-Path encoding: {raw}") from exc


def parse_last_modified(raw: Optional[str], *, now: Optional[datetime] = None) -> datetime:
    """Interpret ``Last-Modified`` as Unix epoch milliseconds, defaulting to ``now``."""
    fallback = now or datetime.now(timezone.utc)
    if not raw:
        return fallback
    try:
        millis = int(raw.strip())
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return fallback


def parse_content_length(raw: Optional[str]) -> int:
    if not raw:
        return 0
    size = int(raw)
    if size < 0:
        raise ValueError(f"negative Content-Length: {raw}")
    return size


def collect_hashes(headers: Mapping[str, str]) -> Dict[str, str]:
    hashes: Dict[str, str] = {}
    for algo, header in HASH_HEADERS.items():
        value = headers.get(header)
        if value:
            hashes[algo] = value.strip()
    return hashes


def resolve_mimetype(declared: Optional[str], name: str) -> str:
    if declared:
        return declared
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_MIMETYPE


def parse_upload_headers(headers: Mapping[str, str]) -> UploadMetadata:
    return UploadMetadata(
        path=decode_file_path(headers.get("File-Path")),
        overwrite=headers.get("Overwrite") != "false",
        as_task=headers.get("As-Task") == "true",
        hashes=collect_hashes(headers),
        modified=parse_last_modified(headers.get("Last-Modified")),
    )


def build_file_stream(
    metadata: UploadMetadata,
    *,
    name: str,
    size: int,
    reader: BinaryIO,
    declared_mimetype: Optional[str],
) -> FileStream:
    """Produce the canonical descriptor handed to storage, whichever transport carried the body."""
    return FileStream(
        name=name,
        size=size,
        modified=metadata.modified,
        reader=reader,
        mimetype=resolve_mimetype(declared_mimetype, name),
        hashes=dict(metadata.hashes),
        as_task=metadata.as_task,
    )


__all__ = [
    "HASH_HEADERS",
    "UploadMetadata",
    "decode_file_path",
    "parse_last_modified",
    "parse_content_length",
    "collect_hashes",
    "resolve_mimetype",
    "parse_upload_headers",
    "build_file_stream",
]
