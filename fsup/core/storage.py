from __future__ import annotations

import hashlib
import os
import posixpath
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, Optional

from .config import Settings
from .errors import AlreadyExists, ObjectNotFound, StorageFailure
from .logging import get_logger

HASH_ALGORITHMS = ("md5", "sha1", "sha256")


@dataclass(slots=True)
class StorageConfig:
    no_upload: bool = False


@dataclass(slots=True)
class Obj:
    """A file or directory as seen through the virtual filesystem."""

    path: str
    name: str
    size_bytes: int
    modified: datetime
    is_dir: bool = False
    local_path: Optional[Path] = None


@dataclass(slots=True)
class FileStream:
    """Canonical upload descriptor; the reader is consumed exactly once by a storage write."""

    name: str
    size: int
    modified: datetime
    reader: BinaryIO
    mimetype: str = "application/octet-stream"
    hashes: Dict[str, str] = field(default_factory=dict)
    as_task: bool = False

    @property
    def is_video(self) -> bool:
        return self.mimetype.lower().startswith("video/")


def split_path(path: str) -> tuple[str, str]:
    """Split a virtual path into its parent directory and base name."""
    normalised = normalise_path(path)
    parent, name = posixpath.split(normalised)
    return parent or "/", name


def normalise_path(path: str) -> str:
    return posixpath.normpath("/" + path.lstrip("/"))


class Storage(ABC):
    config: StorageConfig

    @abstractmethod
    def get(self, path: str) -> Obj: ...

    @abstractmethod
    def make_dir(self, path: str, lazy_cache: bool = False) -> None: ...

    @abstractmethod
    def put_directly(self, dst_dir: str, stream: FileStream, overwrite: bool = True) -> Obj: ...


class LocalStorage(Storage):
    """Virtual filesystem backed by a directory on local disk."""

    chunk_size = 1024 * 1024

    def __init__(self, base_path: Path, *, config: StorageConfig | None = None):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.config = config or StorageConfig()
        self.logger = get_logger(component="local_storage")

    def _resolve(self, path: str) -> Path:
        target = (self.base_path / normalise_path(path).lstrip("/")).resolve()
        try:
            target.relative_to(self.base_path)
        except ValueError as exc:
            raise StorageFailure(f"path escapes storage root: {path}") from exc
        return target

    def get(self, path: str) -> Obj:
        local = self._resolve(path)
        try:
            stat = local.stat()
        except FileNotFoundError as exc:
            raise ObjectNotFound(path) from exc
        except OSError as exc:
            raise StorageFailure(f"failed to stat {path}: {exc}") from exc
        virtual = normalise_path(path)
        return Obj(
            path=virtual,
            name=posixpath.basename(virtual),
            size_bytes=0 if local.is_dir() else stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            is_dir=local.is_dir(),
            local_path=local,
        )

    def make_dir(self, path: str, lazy_cache: bool = False) -> None:
        # lazy_cache only matters for remote drivers with listing caches
        local = self._resolve(path)
        try:
            local.mkdir(parents=True, exist_ok=True)
        except FileExistsError as exc:
            raise StorageFailure(f"not a directory: {path}") from exc
        except OSError as exc:
            raise StorageFailure(f"failed to create {path}: {exc}") from exc

    def put_directly(self, dst_dir: str, stream: FileStream, overwrite: bool = True) -> Obj:
        if not stream.name or "/" in stream.name:
            raise StorageFailure(f"invalid object name: {stream.name!r}")
        target_path = posixpath.join(normalise_path(dst_dir), stream.name)
        target = self._resolve(target_path)
        if target.exists() and not overwrite:
            raise AlreadyExists(target_path)

        self.make_dir(dst_dir)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{stream.name}.", suffix=".part", dir=target.parent)
        try:
            digests = {algo: hashlib.new(algo) for algo in stream.hashes if algo in HASH_ALGORITHMS}
            with os.fdopen(fd, "wb") as handle:
                while chunk := stream.reader.read(self.chunk_size):
                    handle.write(chunk)
                    for digest in digests.values():
                        digest.update(chunk)
            for algo, digest in digests.items():
                if digest.hexdigest().lower() != stream.hashes[algo].lower():
                    raise StorageFailure(f"{algo} mismatch for {target_path}")
            modified = stream.modified.timestamp()
            os.utime(tmp_name, (modified, modified))
            os.replace(tmp_name, target)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageFailure(f"failed to write {target_path}: {exc}") from exc
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self.logger.info("object_written", path=target_path, size=stream.size, mimetype=stream.mimetype)
        return self.get(target_path)


def get_storage(settings: Settings) -> Storage:
    return LocalStorage(
        base_path=Path(settings.storage_root),
        config=StorageConfig(no_upload=settings.storage_read_only),
    )


__all__ = [
    "HASH_ALGORITHMS",
    "Storage",
    "StorageConfig",
    "LocalStorage",
    "Obj",
    "FileStream",
    "split_path",
    "normalise_path",
    "get_storage",
]
