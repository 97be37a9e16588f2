from __future__ import annotations

from pathlib import Path

import cv2  # type: ignore
import numpy as np

from fsup.core.errors import CorruptArtifact, EmptyArtifact


def _is_webp_container(header: bytes) -> bool:
    return len(header) >= 12 and header[:4] == b"RIFF" and header[8:12] == b"WEBP"


def validate_webp(path: str | Path) -> tuple[int, int]:
    """Check that ``path`` holds a decodable WebP image.

    Returns:
        The decoded ``(width, height)``.

    Raises:
        EmptyArtifact: The file is zero bytes.
        CorruptArtifact: The file is not a WebP container or cannot be decoded.
    """
    image_path = Path(path)
    try:
        payload = image_path.read_bytes()
    except OSError as exc:
        raise CorruptArtifact(f"cannot read {image_path}: {exc}") from exc
    if not payload:
        raise EmptyArtifact(f"{image_path} is empty")
    if not _is_webp_container(payload):
        raise CorruptArtifact(f"{image_path} is not a WebP file")

    image = cv2.imdecode(np.frombuffer(payload, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise CorruptArtifact(f"failed to decode {image_path}")
    height, width = image.shape[:2]
    return width, height


__all__ = ["validate_webp"]
