"""
Parsing and normalization of repository source locations.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from ..errors import InputValidationError, UnsupportedSourceError

_GITHUB_PATTERN = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?(?:/.*)?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RepositoryLocation:
    """A validated GitHub repository reference."""

    owner: str
    name: str

    @property
    def url(self) -> str:
        """Normalized clone URL, also used for cache key derivation."""
        return f"https://github.com/{self.owner}/{self.name}"

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"


def parse_repository_url(repo_url: str) -> RepositoryLocation:
    """
    Validate ``repo_url`` and return its normalized location.

    Accepts ``https://github.com/owner/repo`` and the usual variations
    (``http``, ``www.``, no scheme, ``.git`` suffix, trailing slash or deeper
    paths such as ``/tree/main``).
    """
    if repo_url is None or not str(repo_url).strip():
        raise InputValidationError("repoUrl is required")

    candidate = str(repo_url).strip().rstrip("/")
    match = _GITHUB_PATTERN.match(candidate)
    if not match:
        raise UnsupportedSourceError(
            f"Only GitHub repository URLs are supported currently: {repo_url}"
        )
    # GitHub owner and repository names are case-insensitive.
    owner = match.group("owner").lower()
    name = match.group("repo").lower()
    if name in {".", ".."} or owner in {".", ".."}:
        raise UnsupportedSourceError(f"Invalid GitHub repository URL: {repo_url}")
    return RepositoryLocation(owner=owner, name=name)
