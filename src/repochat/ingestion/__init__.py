"""
Repository ingestion package.

This package contains logic for validating, cloning, and packing remote
repositories into a single cached text artifact.
"""
from .packer import RepositoryPacker
from .pipeline import IngestionPipeline, PackResult
from .revision import UNRESOLVED_REVISION, RevisionResolver
from .source import RepositoryLocation, parse_repository_url
from .workspace import Workspace

__all__ = [
    "IngestionPipeline",
    "PackResult",
    "RepositoryLocation",
    "RepositoryPacker",
    "RevisionResolver",
    "UNRESOLVED_REVISION",
    "Workspace",
    "parse_repository_url",
]
