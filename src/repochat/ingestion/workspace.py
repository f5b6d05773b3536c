"""
Ephemeral workspaces that hold one repository checkout per pipeline run.
"""
from __future__ import annotations

import shutil
import time
import uuid
from pathlib import Path
from typing import Optional

from ..logger import get_logger

log = get_logger(__name__)


class Workspace:
    """
    Exclusively owned temporary directory for a single ingestion run.

    Use as ``async with Workspace(root, name) as ws``; the directory is
    removed on every exit path, including task cancellation. Removal runs
    synchronously so it cannot itself be interrupted by a second
    cancellation.
    """

    CHECKOUT_DIRNAME = "repo"
    OUTPUT_FILENAME = "repomix-output.txt"

    def __init__(self, root: Path, name: str) -> None:
        stamp = int(time.time() * 1000)
        self.path = Path(root) / f"{name}-{stamp}-{uuid.uuid4().hex[:8]}"
        self._created = False

    @property
    def checkout_path(self) -> Path:
        return self.path / self.CHECKOUT_DIRNAME

    @property
    def output_path(self) -> Path:
        return self.path / self.OUTPUT_FILENAME

    def create(self) -> "Workspace":
        self.path.mkdir(parents=True, exist_ok=False)
        self._created = True
        log.info("workspace_created", path=str(self.path))
        return self

    def cleanup(self) -> None:
        """Remove the workspace. Failures are logged, never raised."""
        if not self._created:
            return
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("workspace_cleanup_failed", path=str(self.path), error=str(exc))
            return
        self._created = False
        log.info("workspace_cleaned", path=str(self.path))

    async def __aenter__(self) -> "Workspace":
        return self.create()

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.cleanup()
        return None
