"""
Error taxonomy shared by the ingestion pipeline, the cache, and the
conversation orchestrator.

Entry points map these onto transport-level failures (HTTP status codes,
CLI exit codes); the core never deals with transports directly.
"""
from __future__ import annotations


class RepoChatError(Exception):
    """Base class for every failure raised by the core."""


class InputValidationError(RepoChatError):
    """Missing or malformed required input. Raised before any side effect."""


class UnsupportedSourceError(InputValidationError):
    """The source location is not a recognised hosting form."""


class UnknownToolError(InputValidationError):
    """The model asked for a tool that was never offered."""


class FetchError(RepoChatError):
    """Cloning the remote repository failed."""


class PackingError(RepoChatError):
    """The external packing tool failed or produced no output."""


class CacheIOError(RepoChatError):
    """Reading or writing cached content failed at the filesystem level."""


class ModelProviderError(RepoChatError):
    """The upstream language model call failed."""
