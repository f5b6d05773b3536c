"""
File-backed content cache for packed repositories.

Each entry lives under the cache directory as two files named by the cache
key: ``<key>.txt`` holds the packed text and ``<key>.json`` holds a metadata
sidecar. Content is always written before metadata, and a missing or corrupt
sidecar never hides otherwise valid content.

There is no eviction policy. Entries live until they are deleted explicitly
or pruned out of band.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..errors import CacheIOError, InputValidationError
from ..logger import get_logger
from ..settings import settings

log = get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def make_cache_key(source_location: str, revision: str) -> str:
    """Derive the cache key for a normalized source location and revision."""
    combined = f"{source_location}:{revision}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CacheMetadata:
    """Metadata sidecar stored next to the cached content."""

    repo_url: str
    commit_sha: str
    size: int
    cached_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repoUrl": self.repo_url,
            "commitSha": self.commit_sha,
            "size": self.size,
            "cachedAt": self.cached_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheMetadata":
        return cls(
            repo_url=str(payload["repoUrl"]),
            commit_sha=str(payload["commitSha"]),
            size=int(payload["size"]),
            cached_at=str(payload["cachedAt"]),
        )


@dataclass
class CacheEntry:
    """Cached packed content together with its metadata."""

    key: str
    content: str
    metadata: CacheMetadata


class ContentCache:
    """Key-addressed store of packed repository content."""

    CONTENT_SUFFIX = ".txt"
    METADATA_SUFFIX = ".json"

    def __init__(self, cache_dir: Optional[Path] = None) -> None:
        self._cache_dir = Path(cache_dir or settings.cache_dir)
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def exists(self, key: str) -> bool:
        content_path, _ = self._entry_paths(key)
        return await asyncio.to_thread(content_path.is_file)

    async def read(self, key: str) -> Optional[CacheEntry]:
        """Load an entry, or ``None`` when no content is stored under ``key``."""
        content_path, metadata_path = self._entry_paths(key)
        return await asyncio.to_thread(self._read_sync, key, content_path, metadata_path)

    async def metadata(self, key: str) -> Optional[CacheMetadata]:
        entry = await self.read(key)
        return entry.metadata if entry else None

    async def write(
        self,
        key: str,
        content: str,
        repo_url: Optional[str] = None,
        commit_sha: Optional[str] = None,
        size: Optional[int] = None,
        cached_at: Optional[str] = None,
    ) -> Path:
        """
        Persist ``content`` under ``key`` and return the content path.

        Unset metadata fields default to the content length and the current
        time.
        """
        content_path, metadata_path = self._entry_paths(key)
        metadata = CacheMetadata(
            repo_url=repo_url or "",
            commit_sha=commit_sha or "",
            size=size if size is not None else len(content),
            cached_at=cached_at or _utcnow_iso(),
        )
        try:
            await asyncio.to_thread(_write_text_atomic, content_path, content)
            await asyncio.to_thread(
                _write_text_atomic,
                metadata_path,
                json.dumps(metadata.to_dict(), indent=2),
            )
        except OSError as exc:
            raise CacheIOError(f"Failed to save to cache: {exc}") from exc
        log.info("cache_entry_written", key=key, size=metadata.size, repo=metadata.repo_url)
        return content_path

    async def delete(self, key: str) -> None:
        """Remove an entry. Deleting a missing entry is a no-op."""
        content_path, metadata_path = self._entry_paths(key)
        try:
            # Metadata goes first so a half-deleted entry still reads as content.
            await asyncio.to_thread(metadata_path.unlink, missing_ok=True)
            await asyncio.to_thread(content_path.unlink, missing_ok=True)
        except OSError as exc:
            raise CacheIOError(f"Failed to delete cache entry {key}: {exc}") from exc
        log.info("cache_entry_deleted", key=key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _entry_paths(self, key: str) -> Tuple[Path, Path]:
        if not isinstance(key, str) or not _KEY_PATTERN.match(key):
            raise InputValidationError(f"Malformed cache key: {key!r}")
        return (
            self._cache_dir / f"{key}{self.CONTENT_SUFFIX}",
            self._cache_dir / f"{key}{self.METADATA_SUFFIX}",
        )

    @staticmethod
    def _read_sync(key: str, content_path: Path, metadata_path: Path) -> Optional[CacheEntry]:
        try:
            with content_path.open("r", encoding="utf-8", newline="") as handle:
                content = handle.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheIOError(f"Failed to read cached content {key}: {exc}") from exc

        try:
            payload = json.loads(metadata_path.read_text(encoding="utf-8"))
            metadata = CacheMetadata.from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log.warning("cache_metadata_unreadable", key=key, error=str(exc))
            metadata = _synthesize_metadata(content_path, content)
        return CacheEntry(key=key, content=content, metadata=metadata)


def _synthesize_metadata(content_path: Path, content: str) -> CacheMetadata:
    try:
        mtime = content_path.stat().st_mtime
        cached_at = datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()
    except OSError:
        cached_at = _utcnow_iso()
    return CacheMetadata(repo_url="", commit_sha="", size=len(content), cached_at=cached_at)


def _write_text_atomic(path: Path, text: str) -> None:
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with tmp_path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)
