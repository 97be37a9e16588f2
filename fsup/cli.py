from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.auth import Principal
from .core.config import ThumbnailSettings, get_settings
from .core.errors import FsupError
from .core.logging import configure_logging
from .core.storage import LocalStorage
from .thumbnails.codec import run_tool
from .thumbnails.orchestrator import ThumbnailTask, derive_thumbnail
from .thumbnails.strategy import extract_thumbnail
from .thumbnails.validator import validate_webp

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)
    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="fsup developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")
    parser.add_argument("--log-level", default="warning", help="Log level for pipeline events (default warning)")

    subparsers = parser.add_subparsers(dest="command")

    thumb_parser = subparsers.add_parser("thumb", help="Extract and validate a WebP thumbnail for a local video")
    thumb_parser.add_argument("--file", required=True, help="Path to the source video")
    thumb_parser.add_argument("--out", required=True, help="Where to write the .webp thumbnail")
    thumb_parser.set_defaults(func=_cmd_thumb)

    derive_parser = subparsers.add_parser("derive", help="Run the full derivation against a local storage root")
    derive_parser.add_argument("--root", required=True, help="Storage root directory")
    derive_parser.add_argument("--path", required=True, help="Virtual path of the video inside the root")
    derive_parser.add_argument("--user", default="cli", help="User id recorded on the derivation")
    derive_parser.set_defaults(func=_cmd_derive)
    return parser


def _thumbnail_settings() -> ThumbnailSettings:
    return get_settings().thumbnail_settings()


def _cmd_thumb(args: argparse.Namespace) -> None:
    """Extract a thumbnail straight to a local file.

    Args:
        args: The command-line arguments.
    """
    media_path = Path(args.file).expanduser().resolve()
    out_path = Path(args.out).expanduser().resolve()
    if not media_path.exists():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)

    try:
        attempt = asyncio.run(extract_thumbnail(media_path, out_path, _thumbnail_settings()))
        width, height = validate_webp(out_path)
    except FsupError as exc:
        console.print(f"[red]{type(exc).__name__}:[/] {exc}")
        sys.exit(3)
    console.print(f"[green]Thumbnail written to {out_path}[/] ({width}x{height}, {attempt.value} frame)")


def _cmd_derive(args: argparse.Namespace) -> None:
    """Run the thumbnail derivation exactly as the upload path does.

    Args:
        args: The command-line arguments.
    """
    storage = LocalStorage(Path(args.root).expanduser())
    principal = Principal(user_id=args.user)
    task = ThumbnailTask.for_source(args.path, principal)
    published = asyncio.run(derive_thumbnail(args.path, principal, storage=storage, settings=_thumbnail_settings()))
    if published:
        console.print(f"[green]Published {task.target_path}[/]")
    else:
        console.print(f"[yellow]No thumbnail published for {task.source_path}; see logs.[/]")
        sys.exit(1)


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()

    async def probe(command: str) -> bool:
        try:
            await run_tool(command, ["-version"], timeout=10)
        except FsupError:
            return False
        return True

    results = {
        "ffmpeg": asyncio.run(probe(settings.ffmpeg_bin)),
        "ffprobe": asyncio.run(probe(settings.ffprobe_bin)),
    }

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg with libwebp support.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
