"""
Shared FastAPI dependencies (core services, telemetry).

Services are built lazily on first use and shared for the lifetime of the
process; tests swap them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from .telemetry import Telemetry
from ..ingestion import IngestionPipeline
from ..services import ConversationOrchestrator
from ..settings import settings
from ..storage import ContentCache


@lru_cache(maxsize=1)
def get_pipeline() -> IngestionPipeline:
    return IngestionPipeline()


def get_cache(pipeline: IngestionPipeline = Depends(get_pipeline)) -> ContentCache:
    return pipeline.cache


@lru_cache(maxsize=1)
def get_orchestrator() -> ConversationOrchestrator:
    return ConversationOrchestrator(pipeline=get_pipeline())


@lru_cache(maxsize=1)
def get_telemetry() -> Telemetry:
    return Telemetry()


def telemetry_enabled() -> bool:
    """Expose telemetry toggle as a dependency."""
    return settings.telemetry_enabled
