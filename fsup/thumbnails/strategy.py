"""Frame extraction strategies for video thumbnails.

The chain first asks ffmpeg for the first frame of the first video stream. Files whose opening
frame is unusable (broken headers, audio at position zero) fall back to a frame a few percent
into the video, scaled down to a fixed width.
"""

from __future__ import annotations

import enum
import os
from pathlib import Path

from fsup.core.config import ThumbnailSettings
from fsup.core.errors import ExtractionFailed
from fsup.core.logging import get_logger

from .codec import run_tool

FALLBACK_PERCENTAGE = 3.0
FALLBACK_WIDTH = 320

# Shared by both attempts so validation sees one encoding.
WEBP_OUTPUT_ARGS: tuple[str, ...] = (
    "-c:v",
    "libwebp",
    "-q:v",
    "80",
    "-lossless",
    "0",
    "-compression_level",
    "6",
    "-preset",
    "default",
)

logger = get_logger(component="thumbnail_strategy")


class ExtractionAttempt(str, enum.Enum):
    cover = "cover"
    offset = "offset"


def format_seek_time(seconds: float) -> str:
    """Format a position in seconds as ``HH:MM:SS.mmm`` for ffmpeg's ``-ss``."""
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def seek_offset(duration_s: float, percentage: float = FALLBACK_PERCENTAGE) -> float:
    return duration_s * (percentage / 100.0)


def _parse_duration(raw_value: str) -> float | None:
    value = raw_value.strip()
    if value in ("", "N/A"):
        return None
    try:
        return float(value.splitlines()[0])
    except ValueError:
        return None


def cover_frame_args(video_path: str, output_path: str) -> list[str]:
    return [
        "-nostdin",
        "-i",
        video_path,
        "-map",
        "0:v:0",
        "-vframes",
        "1",
        *WEBP_OUTPUT_ARGS,
        "-y",
        output_path,
    ]


def offset_frame_args(video_path: str, output_path: str, seek: str) -> list[str]:
    return [
        "-nostdin",
        "-ss",
        seek,
        "-i",
        video_path,
        "-vframes",
        "1",
        "-vf",
        f"scale={FALLBACK_WIDTH}:-1",
        *WEBP_OUTPUT_ARGS,
        "-update",
        "1",
        "-y",
        output_path,
    ]


async def probe_duration(video_path: str, settings: ThumbnailSettings) -> float:
    result = await run_tool(
        settings.ffprobe_bin,
        [
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            video_path,
        ],
        timeout=settings.timeout_s,
    )
    duration = _parse_duration(result.stdout)
    if duration is None:
        raise ExtractionFailed("duration unavailable", output=result.combined)
    return duration


def _has_output(output_path: str) -> bool:
    try:
        return os.path.getsize(output_path) > 0
    except OSError:
        return False


async def extract_cover(video_path: str, output_path: str, settings: ThumbnailSettings) -> None:
    await run_tool(settings.ffmpeg_bin, cover_frame_args(video_path, output_path), timeout=settings.timeout_s)
    if not _has_output(output_path):
        raise ExtractionFailed("ffmpeg produced no cover frame")


async def extract_frame_at_percentage(
    video_path: str,
    output_path: str,
    settings: ThumbnailSettings,
    percentage: float = FALLBACK_PERCENTAGE,
) -> None:
    duration = await probe_duration(video_path, settings)
    seek = format_seek_time(seek_offset(duration, percentage))
    await run_tool(settings.ffmpeg_bin, offset_frame_args(video_path, output_path, seek), timeout=settings.timeout_s)
    if not _has_output(output_path):
        raise ExtractionFailed(f"ffmpeg produced no frame at {seek}")


async def extract_thumbnail(video_path: str | Path, output_path: str | Path, settings: ThumbnailSettings) -> ExtractionAttempt:
    """Write a WebP frame of ``video_path`` to ``output_path``.

    Returns:
        The strategy that produced the frame.

    Raises:
        ExtractionFailed: Neither strategy produced a frame.
    """
    video, output = str(video_path), str(output_path)
    try:
        await extract_cover(video, output, settings)
        return ExtractionAttempt.cover
    except ExtractionFailed as exc:
        logger.info("cover_extraction_failed", video=video, error=str(exc), output=exc.output)

    try:
        await extract_frame_at_percentage(video, output, settings)
    except ExtractionFailed as exc:
        logger.warning("offset_extraction_failed", video=video, error=str(exc), output=exc.output)
        raise ExtractionFailed(f"no frame could be extracted from {video}: {exc}", output=exc.output) from exc
    return ExtractionAttempt.offset


__all__ = [
    "ExtractionAttempt",
    "FALLBACK_PERCENTAGE",
    "FALLBACK_WIDTH",
    "WEBP_OUTPUT_ARGS",
    "format_seek_time",
    "seek_offset",
    "probe_duration",
    "extract_cover",
    "extract_frame_at_percentage",
    "extract_thumbnail",
]
