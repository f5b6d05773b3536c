"""
Revision resolution for remote repositories.

Two paths exist. The optimistic one asks the GitHub REST API for the head
commit of a conventional branch without cloning anything, so the cache can be
checked before paying for a fetch. The authoritative one reads ``HEAD`` from
a finished checkout. Neither path raises: failures fall back to the
``UNRESOLVED_REVISION`` sentinel, which still participates in key derivation.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import requests

from .commands import run_command
from .source import RepositoryLocation
from ..logger import get_logger
from ..settings import settings

log = get_logger(__name__)

UNRESOLVED_REVISION = "latest"


class RevisionResolver:
    """Determine the commit a repository location currently points at."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        token: Optional[str] = None,
        branches: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        git_executable: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_base = (api_base or settings.github_api_base).rstrip("/")
        self.token = token if token is not None else settings.github_token
        self.branches: List[str] = list(branches or settings.github_branch_candidates)
        self.timeout = timeout if timeout is not None else settings.github_request_timeout
        self.git_executable = git_executable or settings.git_executable
        self.session = session or requests.Session()

    async def resolve_revision(self, location: RepositoryLocation) -> str:
        """Best-effort head commit lookup that never requires a clone."""
        for branch in self.branches:
            sha = await asyncio.to_thread(self._fetch_branch_head, location, branch)
            if sha:
                log.info("revision_resolved", repo=location.slug, branch=branch, sha=sha)
                return sha
        log.warning("revision_unresolved", repo=location.slug, branches=self.branches)
        return UNRESOLVED_REVISION

    async def resolve_checkout_revision(self, checkout_path: Path) -> str:
        """Read the exact commit of a finished checkout."""
        try:
            result = await run_command(
                [self.git_executable, "-C", str(checkout_path), "rev-parse", "HEAD"]
            )
        except OSError as exc:
            log.warning("checkout_revision_failed", path=str(checkout_path), error=str(exc))
            return UNRESOLVED_REVISION
        sha = result.stdout.strip()
        if not result.ok or not sha:
            log.warning(
                "checkout_revision_failed",
                path=str(checkout_path),
                error=result.describe_failure(),
            )
            return UNRESOLVED_REVISION
        return sha

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _fetch_branch_head(self, location: RepositoryLocation, branch: str) -> Optional[str]:
        url = f"{self.api_base}/repos/{location.owner}/{location.name}/commits/{branch}"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            log.debug("branch_lookup_failed", url=url, error=str(exc))
            return None
        if response.status_code != 200:
            log.debug("branch_lookup_rejected", url=url, status=response.status_code)
            return None
        try:
            sha = response.json().get("sha")
        except (ValueError, AttributeError):
            log.debug("branch_lookup_unparseable", url=url)
            return None
        return sha if isinstance(sha, str) and sha else None
