"""
FastAPI entrypoint for the repository chat assistant.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .dependencies import (
    get_cache,
    get_orchestrator,
    get_pipeline,
    get_telemetry,
    telemetry_enabled,
)
from .telemetry import Telemetry
from ..errors import InputValidationError, ModelProviderError, RepoChatError
from ..ingestion import IngestionPipeline
from ..logger import configure_logging, get_logger
from ..services import ConversationOrchestrator
from ..settings import settings
from ..storage import ContentCache
from ..version import __version__

log = get_logger(__name__)

app = FastAPI(title="Repository Chat Assistant", version=__version__)
router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ChatRequest(CamelModel):
    message: Optional[str] = None
    cache_key: Optional[str] = None
    api_key: Optional[str] = None
    conversation_history: List[HistoryMessage] = []


class RepoMetadata(CamelModel):
    repo_url: str
    commit_sha: str
    size: int
    cached_at: str


class PackResultPayload(CamelModel):
    cache_key: str
    from_cache: bool
    repo_url: str
    commit_sha: str
    size: int
    cached_at: Optional[str] = None


class ToolCallPayload(CamelModel):
    tool: str
    arguments: Dict[str, Any]
    result: Optional[PackResultPayload] = None
    error: Optional[str] = None


class UsagePayload(CamelModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatResponse(CamelModel):
    response: str
    tool_calls: Optional[List[ToolCallPayload]] = None
    usage: Optional[UsagePayload] = None
    cache_key: Optional[str] = None


class PackRequest(CamelModel):
    repo_url: Optional[str] = None
    force_refresh: bool = False


class PackResponse(CamelModel):
    success: bool
    cache_key: Optional[str] = None
    from_cache: Optional[bool] = None
    metadata: Optional[RepoMetadata] = None
    error: Optional[str] = None


class StatusResponse(CamelModel):
    exists: bool
    cache_key: str
    metadata: Optional[RepoMetadata] = None


class DeleteResponse(CamelModel):
    success: bool
    message: str


class TelemetryResponse(BaseModel):
    pack: Dict[str, Any]
    chat: Dict[str, Any]
    recent_events: List[Dict[str, Any]]


def _status_for(exc: RepoChatError) -> int:
    if isinstance(exc, InputValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ModelProviderError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(RepoChatError)
async def handle_core_error(request: Request, exc: RepoChatError) -> JSONResponse:
    code = _status_for(exc)
    if code >= 500:
        log.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=code, content={"error": str(exc)})


@app.get("/")
def index() -> Dict[str, str]:
    return {"status": "ok", "message": "Repository Chat Assistant API", "version": __version__}


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(
    request: ChatRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    telemetry: Telemetry = Depends(get_telemetry),
) -> ChatResponse:
    if not request.message or not request.message.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required"
        )

    start_time = time.time()
    try:
        result = await orchestrator.chat(
            request.message,
            cache_key=request.cache_key,
            history=[item.model_dump(exclude_none=True) for item in request.conversation_history],
            api_key=request.api_key,
        )
    except RepoChatError:
        _record_chat_telemetry(telemetry, start_time, ok=False)
        raise

    _record_chat_telemetry(telemetry, start_time, ok=True, tool_failures=result.tool_failures)
    return ChatResponse.model_validate(result.to_dict())


@router.post("/repo/pack", response_model=PackResponse, response_model_exclude_none=True)
async def pack_repository(
    request: PackRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
    telemetry: Telemetry = Depends(get_telemetry),
) -> Any:
    if not request.repo_url or not request.repo_url.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="repoUrl is required"
        )

    start_time = time.time()
    try:
        result = await pipeline.process(request.repo_url, request.force_refresh)
    except RepoChatError as exc:
        _record_pack_telemetry(
            telemetry, start_time, ok=False, metadata={"repo": request.repo_url, "error": str(exc)}
        )
        code = _status_for(exc)
        if code >= 500:
            log.error("pack_failed", repo=request.repo_url, error=str(exc))
        failure = PackResponse(success=False, error=str(exc))
        return JSONResponse(
            status_code=code, content=failure.model_dump(by_alias=True, exclude_none=True)
        )

    _record_pack_telemetry(
        telemetry,
        start_time,
        ok=True,
        from_cache=result.from_cache,
        metadata={"repo": result.repo_url},
    )
    return PackResponse(
        success=True,
        cache_key=result.cache_key,
        from_cache=result.from_cache,
        metadata=RepoMetadata(
            repo_url=result.repo_url,
            commit_sha=result.commit_sha,
            size=result.size,
            cached_at=result.cached_at or "",
        ),
    )


@router.get("/repo/status/{cache_key}", response_model=StatusResponse, response_model_exclude_none=True)
async def repository_status(
    cache_key: str,
    cache: ContentCache = Depends(get_cache),
) -> Any:
    metadata = await cache.metadata(cache_key)
    if metadata is None:
        missing = StatusResponse(exists=False, cache_key=cache_key)
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=missing.model_dump(by_alias=True, exclude_none=True),
        )
    return StatusResponse(
        exists=True,
        cache_key=cache_key,
        metadata=RepoMetadata.model_validate(metadata.to_dict()),
    )


@router.delete("/repo/cache/{cache_key}", response_model=DeleteResponse)
async def delete_cached_repository(
    cache_key: str,
    cache: ContentCache = Depends(get_cache),
) -> DeleteResponse:
    await cache.delete(cache_key)
    return DeleteResponse(success=True, message="Cache deleted")


@router.get("/telemetry", response_model=TelemetryResponse)
def telemetry_snapshot(
    enabled: bool = Depends(telemetry_enabled),
    telemetry: Telemetry = Depends(get_telemetry),
) -> TelemetryResponse:
    if not enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Telemetry disabled"
        )
    return TelemetryResponse(**telemetry.snapshot())


app.include_router(router)
app.include_router(router, prefix="/api")


def _record_chat_telemetry(
    telemetry: Telemetry, start_time: float, ok: bool, tool_failures: int = 0
) -> None:
    if not settings.telemetry_enabled:
        return
    telemetry.record_chat(
        duration_ms=(time.time() - start_time) * 1000.0, ok=ok, tool_failures=tool_failures
    )


def _record_pack_telemetry(
    telemetry: Telemetry,
    start_time: float,
    ok: bool,
    from_cache: bool = False,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    if not settings.telemetry_enabled:
        return
    telemetry.record_pack(
        duration_ms=(time.time() - start_time) * 1000.0,
        ok=ok,
        from_cache=from_cache,
        metadata=metadata,
    )


def run() -> None:
    """CLI entrypoint to run the FastAPI server."""
    configure_logging(settings.log_level, json_output=settings.log_json)
    uvicorn.run(
        "repochat.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
