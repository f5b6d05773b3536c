"""
Integration layer for the external repository packing tool.

The packer flattens a checkout into a single text artifact. ``repomix`` is
the default; any CLI that accepts a source directory and an output file can
be configured through a command template with ``{source}`` and ``{output}``
placeholders.
"""
from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import List, Optional

from .commands import run_command
from ..errors import PackingError
from ..logger import get_logger
from ..settings import settings

log = get_logger(__name__)


class RepositoryPacker:
    """Run the configured packing tool and read back its output."""

    def __init__(self, command_template: Optional[str] = None) -> None:
        self.command_template = command_template or settings.pack_command
        if "{source}" not in self.command_template or "{output}" not in self.command_template:
            raise ValueError(
                "Pack command must contain both {source} and {output} placeholders."
            )

    def build_command(self, source: Path, output: Path) -> List[str]:
        return [
            part.format(source=str(source), output=str(output))
            for part in shlex.split(self.command_template)
        ]

    async def pack(self, source: Path, output: Path) -> str:
        """Pack ``source`` into ``output`` and return the artifact text."""
        args = self.build_command(source, output)
        log.info("packing_repository", source=str(source), tool=args[0])
        try:
            result = await run_command(args)
        except OSError as exc:
            raise PackingError(f"Failed to pack repository: {exc}") from exc
        if not result.ok:
            raise PackingError(f"Failed to pack repository: {result.describe_failure()}")
        if not output.is_file():
            raise PackingError(f"Failed to pack repository: no output produced at {output}")

        try:
            content = await asyncio.to_thread(
                output.read_text, encoding="utf-8", errors="replace"
            )
        except OSError as exc:
            raise PackingError(f"Failed to read packed repo: {exc}") from exc
        log.info("repository_packed", source=str(source), size=len(content))
        return content
