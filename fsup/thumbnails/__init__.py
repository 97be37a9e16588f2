"""Post-upload thumbnail derivation for video objects."""

from fsup.thumbnails.orchestrator import ThumbnailTask, derive_thumbnail
from fsup.thumbnails.strategy import ExtractionAttempt, extract_thumbnail, format_seek_time
from fsup.thumbnails.validator import validate_webp

__all__ = [
    "ThumbnailTask",
    "derive_thumbnail",
    "ExtractionAttempt",
    "extract_thumbnail",
    "format_seek_time",
    "validate_webp",
]
