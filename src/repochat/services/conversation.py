"""
Tool-calling conversation orchestration.

One chat turn runs as a small state machine: append the user message and
preload any cached repository context, ask the model (offering the tools),
execute each requested tool in order, and re-ask the model with the fresh
repository context after every successful ingestion.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from ..errors import CacheIOError, InputValidationError, RepoChatError, UnknownToolError
from ..ingestion import IngestionPipeline, PackResult
from ..llm import (
    TOOL_DEFINITIONS,
    ChatCompletion,
    ChatModelClient,
    PackRepositoryCall,
    TokenUsage,
    ToolCallRecord,
    ToolCall,
    ToolInvocation,
    get_chat_client,
    parse_tool_invocation,
    to_langchain_messages,
)
from ..logger import get_logger
from ..storage import ContentCache

log = get_logger(__name__)


@dataclass
class ConversationResult:
    response: str
    usage: TokenUsage
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    cache_key: Optional[str] = None

    @property
    def tool_failures(self) -> int:
        return sum(1 for record in self.tool_calls if not record.ok)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"response": self.response, "usage": self.usage.to_dict()}
        if self.tool_calls:
            payload["toolCalls"] = [record.to_dict() for record in self.tool_calls]
        if self.cache_key:
            payload["cacheKey"] = self.cache_key
        return payload


class ConversationOrchestrator:
    """Drive the two-step tool-calling protocol for a single chat turn."""

    def __init__(
        self,
        pipeline: Optional[IngestionPipeline] = None,
        client: Optional[ChatModelClient] = None,
        client_factory: Callable[[Optional[str]], ChatModelClient] = get_chat_client,
    ) -> None:
        self.pipeline = pipeline or IngestionPipeline()
        self._client = client
        self._client_factory = client_factory

    @property
    def cache(self) -> ContentCache:
        return self.pipeline.cache

    def client_for(self, api_key: Optional[str] = None) -> ChatModelClient:
        """Injected client when present, otherwise the shared per-key handle."""
        if api_key:
            return self._client_factory(api_key)
        if self._client is None:
            self._client = self._client_factory(None)
        return self._client

    async def chat(
        self,
        message: str,
        cache_key: Optional[str] = None,
        history: Optional[Iterable[Dict[str, Any]]] = None,
        api_key: Optional[str] = None,
    ) -> ConversationResult:
        if not message or not message.strip():
            raise InputValidationError("Message is required")
        client = self.client_for(api_key)

        messages: List[BaseMessage] = to_langchain_messages(history or [])
        messages.append(HumanMessage(content=message))

        context, current_key = await self._preload_context(cache_key)

        response = await client.chat(messages, TOOL_DEFINITIONS, context)
        records: List[ToolCallRecord] = []

        if client.has_tool_calls(response.message):
            first_message = response.message
            for invocation in client.parse_tool_calls(first_message):
                outcome = await self._execute(client, invocation, first_message, messages)
                records.append(outcome.record)
                if outcome.completion is not None:
                    response = outcome.completion
                    current_key = outcome.cache_key

        answer = response.content
        if not answer.strip() and any(not record.ok for record in records):
            answer = _fallback_answer(records)

        log.info(
            "chat_turn_completed",
            tool_calls=len(records),
            tool_failures=sum(1 for record in records if not record.ok),
            cache_key=current_key,
        )
        return ConversationResult(
            response=answer,
            usage=response.usage,
            tool_calls=records,
            cache_key=current_key,
        )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------
    async def _preload_context(self, cache_key: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        if not cache_key:
            return None, None
        try:
            entry = await self.cache.read(cache_key)
        except (InputValidationError, CacheIOError) as exc:
            log.warning("cache_preload_failed", cache_key=cache_key, error=str(exc))
            entry = None
        if entry is None:
            log.info("stale_cache_key_discarded", cache_key=cache_key)
            return None, None
        return entry.content, cache_key

    async def _execute(
        self,
        client: ChatModelClient,
        invocation: ToolInvocation,
        first_message: AIMessage,
        messages: List[BaseMessage],
    ) -> _ToolOutcome:
        record = ToolCallRecord(tool=invocation.name, arguments=invocation.arguments)
        try:
            call = parse_tool_invocation(invocation)
            result = await self._run_tool(call)
        except RepoChatError as exc:
            log.warning("tool_call_failed", tool=invocation.name, error=str(exc))
            record.error = str(exc)
            return _ToolOutcome(record=record)

        record.result = result.to_dict()
        messages.append(
            AIMessage(
                content=first_message.content,
                tool_calls=[
                    {"id": invocation.id, "name": invocation.name, "args": invocation.arguments}
                ],
            )
        )
        messages.append(ToolMessage(content=json.dumps(record.result), tool_call_id=invocation.id))

        try:
            entry = await self.cache.read(result.cache_key)
        except CacheIOError as exc:
            log.warning("packed_entry_unreadable", cache_key=result.cache_key, error=str(exc))
            entry = None
        if entry is None:
            log.warning("packed_entry_missing", cache_key=result.cache_key)
            return _ToolOutcome(record=record)
        completion = await client.chat(messages, None, entry.content)
        return _ToolOutcome(record=record, completion=completion, cache_key=result.cache_key)

    async def _run_tool(self, call: ToolCall) -> PackResult:
        if isinstance(call, PackRepositoryCall):
            return await self.pipeline.process(
                call.arguments.repo_url, call.arguments.force_refresh
            )
        raise UnknownToolError(f"Unknown tool: {call.kind}")


@dataclass
class _ToolOutcome:
    record: ToolCallRecord
    completion: Optional[ChatCompletion] = None
    cache_key: Optional[str] = None


def _fallback_answer(records: List[ToolCallRecord]) -> str:
    failures = [f"- {record.tool}: {record.error}" for record in records if not record.ok]
    return (
        "I could not load the requested repository, so I cannot answer with its "
        "context. The following tool calls failed:\n" + "\n".join(failures)
    )
