from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Sequence

from fsup.core.errors import ExtractionFailed
from fsup.core.logging import get_logger

logger = get_logger(component="codec")


@dataclass(slots=True)
class ToolResult:
    stdout: str
    stderr: str

    @property
    def combined(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


async def run_tool(command: str, args: Sequence[str], *, timeout: float | None = None) -> ToolResult:
    """Run an external codec tool to completion and capture its output.

    The subprocess is bound to the awaiting coroutine: a timeout or a cancellation of the caller
    kills it before control returns.

    Args:
        command: Executable name or path, e.g. ``ffmpeg``.
        args: Arguments passed after the command.
        timeout: Seconds to wait before killing the tool; ``None`` waits indefinitely.

    Returns:
        The decoded stdout and stderr of a successful run.

    Raises:
        ExtractionFailed: The tool could not be started, timed out, or exited non-zero.
    """
    argv = [command, *args]
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ExtractionFailed(f"{command} could not be started", output=str(exc)) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError as exc:
        raise ExtractionFailed(f"{command} timed out after {timeout}s") from exc
    finally:
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await asyncio.shield(proc.wait())

    result = ToolResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if proc.returncode != 0:
        logger.debug("tool_failed", command=command, returncode=proc.returncode, output=result.combined)
        raise ExtractionFailed(
            f"{command} exited with status {proc.returncode}",
            output=result.combined,
            returncode=proc.returncode,
        )
    return result


__all__ = ["ToolResult", "run_tool"]
