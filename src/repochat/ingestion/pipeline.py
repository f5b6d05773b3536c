"""
Repository ingestion orchestration.

The pipeline turns a GitHub URL into a cached, packed text artifact:
validate, check the cache using an optimistic revision, clone into an
ephemeral workspace, re-check the cache with the authoritative revision,
pack, persist. The workspace is torn down on every exit path.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .commands import run_command
from .packer import RepositoryPacker
from .revision import RevisionResolver
from .source import RepositoryLocation, parse_repository_url
from .workspace import Workspace
from ..errors import FetchError
from ..logger import get_logger
from ..settings import settings
from ..storage import CacheEntry, ContentCache, make_cache_key

log = get_logger(__name__)


@dataclass
class PackResult:
    """Outcome of one ``IngestionPipeline.process`` call."""

    cache_key: str
    from_cache: bool
    repo_url: str
    commit_sha: str
    size: int
    cached_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "cacheKey": self.cache_key,
            "fromCache": self.from_cache,
            "repoUrl": self.repo_url,
            "commitSha": self.commit_sha,
            "size": self.size,
        }
        if self.cached_at:
            payload["cachedAt"] = self.cached_at
        return payload

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "PackResult":
        return cls(
            cache_key=entry.key,
            from_cache=True,
            repo_url=entry.metadata.repo_url,
            commit_sha=entry.metadata.commit_sha,
            size=entry.metadata.size,
            cached_at=entry.metadata.cached_at,
        )


class _KeyedLocks:
    """Per-key asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    async def acquire(self, key: str) -> asyncio.Lock:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_user(key)
            raise
        return lock

    def release(self, key: str, lock: asyncio.Lock) -> None:
        lock.release()
        self._release_user(key)

    def _release_user(self, key: str) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = remaining


class IngestionPipeline:
    """Clone, pack, and cache GitHub repositories."""

    def __init__(
        self,
        cache: Optional[ContentCache] = None,
        resolver: Optional[RevisionResolver] = None,
        packer: Optional[RepositoryPacker] = None,
        temp_dir: Optional[Path] = None,
        git_executable: Optional[str] = None,
    ) -> None:
        self.cache = cache or ContentCache()
        self.resolver = resolver or RevisionResolver()
        self.packer = packer or RepositoryPacker()
        self.temp_dir = Path(temp_dir or settings.temp_dir)
        self.git_executable = git_executable or settings.git_executable
        self._inflight = _KeyedLocks()

    async def process(self, repo_url: str, force_refresh: bool = False) -> PackResult:
        """
        Return a cached packing of ``repo_url``, producing one when needed.

        Concurrent calls for the same repository inside this process are
        serialized, so the later caller finds the entry the earlier one wrote.
        """
        location = parse_repository_url(repo_url)
        lock = await self._inflight.acquire(location.url)
        try:
            return await self._process_locked(location, force_refresh)
        finally:
            self._inflight.release(location.url, lock)

    async def _process_locked(self, location: RepositoryLocation, force_refresh: bool) -> PackResult:
        revision = await self.resolver.resolve_revision(location)
        cache_key = make_cache_key(location.url, revision)
        if not force_refresh:
            cached = await self.cache.read(cache_key)
            if cached:
                log.info("using_cached_version", repo=location.slug, key=cache_key)
                return PackResult.from_entry(cached)

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        async with Workspace(self.temp_dir, location.name) as workspace:
            await self._clone(location, workspace.checkout_path)

            commit_sha = await self.resolver.resolve_checkout_revision(workspace.checkout_path)
            authoritative_key = make_cache_key(location.url, commit_sha)
            if authoritative_key != cache_key:
                log.info(
                    "cache_key_revised",
                    repo=location.slug,
                    optimistic=revision,
                    authoritative=commit_sha,
                )
            if not force_refresh:
                cached = await self.cache.read(authoritative_key)
                if cached:
                    log.info("using_cached_version", repo=location.slug, key=authoritative_key)
                    return PackResult.from_entry(cached)

            content = await self.packer.pack(workspace.checkout_path, workspace.output_path)
            cached_at = datetime.now(timezone.utc).isoformat()
            await self.cache.write(
                authoritative_key,
                content,
                repo_url=location.url,
                commit_sha=commit_sha,
                size=len(content),
                cached_at=cached_at,
            )

        log.info("repository_ingested", repo=location.slug, key=authoritative_key, size=len(content))
        return PackResult(
            cache_key=authoritative_key,
            from_cache=False,
            repo_url=location.url,
            commit_sha=commit_sha,
            size=len(content),
            cached_at=cached_at,
        )

    async def _clone(self, location: RepositoryLocation, destination: Path) -> None:
        log.info("cloning_repository", repo=location.url, destination=str(destination))
        args = [self.git_executable, "clone", "--depth", "1", location.url, str(destination)]
        try:
            result = await run_command(args)
        except OSError as exc:
            raise FetchError(f"Failed to clone repository: {exc}") from exc
        if not result.ok:
            raise FetchError(f"Failed to clone repository: {result.describe_failure()}")
