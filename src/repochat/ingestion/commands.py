"""
Async subprocess helpers for the external tools the pipeline shells out to.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..logger import get_logger

log = get_logger(__name__)


@dataclass
class CommandResult:
    args: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe_failure(self, limit: int = 500) -> str:
        detail = (self.stderr or self.stdout).strip()
        if len(detail) > limit:
            detail = "..." + detail[-limit:]
        return f"exit code {self.returncode}: {detail}" if detail else f"exit code {self.returncode}"


async def run_command(args: Sequence[str], cwd: Optional[Path] = None) -> CommandResult:
    """
    Run ``args`` without a shell and capture its output.

    Raises ``FileNotFoundError`` when the executable is missing. If the
    awaiting task is cancelled the child process is killed before the
    cancellation propagates.
    """
    log.debug("command_started", args=list(args), cwd=str(cwd) if cwd else None)
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
    result = CommandResult(
        args=list(args),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    log.debug("command_finished", args=list(args), returncode=result.returncode)
    return result
