"""
Language model client used by the conversation orchestrator.

Any OpenAI-compatible chat endpoint works through ``langchain-openai``; Groq
is the default. Clients are created lazily, once per API key, and shared for
the lifetime of the process.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from .tools import ToolInvocation
from ..errors import InputValidationError, ModelProviderError
from ..logger import get_logger
from ..settings import settings

log = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert developer assistant. Help users understand and work with their code."
)
CONTEXT_SYSTEM_PROMPT = (
    "You are an expert developer assistant. You have access to a packed repository "
    "context below. Use this context to answer questions about the codebase accurately."
    "\n\n<REPO_CONTEXT>\n{context}\n</REPO_CONTEXT>"
)


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ChatCompletion:
    message: AIMessage
    usage: TokenUsage
    finish_reason: str

    @property
    def content(self) -> str:
        content = self.message.content
        if isinstance(content, str):
            return content
        # Some providers return content blocks instead of a plain string.
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )


def build_system_message(context: Optional[str]) -> SystemMessage:
    if context:
        return SystemMessage(content=CONTEXT_SYSTEM_PROMPT.format(context=context))
    return SystemMessage(content=DEFAULT_SYSTEM_PROMPT)


class ChatModelClient:
    """Thin, immutable wrapper around a LangChain chat model."""

    def __init__(self, model: BaseChatModel) -> None:
        self._model = model

    @property
    def model(self) -> BaseChatModel:
        return self._model

    async def chat(
        self,
        messages: Sequence[BaseMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        context: Optional[str] = None,
    ) -> ChatCompletion:
        """Send the conversation, optionally offering tools and repository context."""
        all_messages: List[BaseMessage] = [build_system_message(context), *messages]
        runnable: Any = self._model
        if tools:
            runnable = self._model.bind_tools(tools, tool_choice="auto")
        try:
            reply = await runnable.ainvoke(all_messages)
        except Exception as exc:
            log.error("model_call_failed", error=str(exc))
            raise ModelProviderError(f"Model API failed: {exc}") from exc
        if not isinstance(reply, AIMessage):
            raise ModelProviderError(f"Unexpected model reply type: {type(reply).__name__}")

        completion = ChatCompletion(
            message=reply,
            usage=_extract_usage(reply),
            finish_reason=str(reply.response_metadata.get("finish_reason") or "stop"),
        )
        log.info(
            "model_call_completed",
            finish_reason=completion.finish_reason,
            total_tokens=completion.usage.total_tokens,
            tool_calls=len(reply.tool_calls) + len(reply.invalid_tool_calls),
        )
        return completion

    @staticmethod
    def has_tool_calls(message: AIMessage) -> bool:
        return bool(message.tool_calls or message.invalid_tool_calls)

    @staticmethod
    def parse_tool_calls(message: AIMessage) -> List[ToolInvocation]:
        """Return the requested invocations in the order the model emitted them."""
        invocations = [
            ToolInvocation(id=call.get("id") or "", name=call["name"], arguments=dict(call["args"]))
            for call in message.tool_calls
        ]
        for call in message.invalid_tool_calls:
            invocations.append(
                ToolInvocation(
                    id=call.get("id") or "",
                    name=call.get("name") or "",
                    arguments={"raw": call.get("args")},
                    error=call.get("error") or "unparseable arguments",
                )
            )
        return invocations


def _extract_usage(message: AIMessage) -> TokenUsage:
    usage = message.usage_metadata
    if usage:
        return TokenUsage(
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )
    raw = message.response_metadata.get("token_usage") or {}
    return TokenUsage(
        prompt_tokens=raw.get("prompt_tokens", 0) or 0,
        completion_tokens=raw.get("completion_tokens", 0) or 0,
        total_tokens=raw.get("total_tokens", 0) or 0,
    )


def to_langchain_messages(history: Iterable[Dict[str, Any]]) -> List[BaseMessage]:
    """Convert OpenAI-style role-tagged dictionaries into LangChain messages."""
    messages: List[BaseMessage] = []
    for item in history:
        role = item.get("role")
        content = item.get("content") or ""
        if role == "user":
            messages.append(HumanMessage(content=content))
        elif role == "system":
            messages.append(SystemMessage(content=content))
        elif role == "assistant":
            tool_calls = [_openai_tool_call(call) for call in item.get("tool_calls") or []]
            messages.append(AIMessage(content=content, tool_calls=tool_calls))
        elif role == "tool":
            messages.append(ToolMessage(content=content, tool_call_id=item.get("tool_call_id") or ""))
        else:
            raise InputValidationError(f"Unsupported message role in history: {role!r}")
    return messages


def _openai_tool_call(call: Dict[str, Any]) -> Dict[str, Any]:
    function = call.get("function") or {}
    arguments = function.get("arguments") or "{}"
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            arguments = {}
    return {"id": call.get("id") or "", "name": function.get("name") or "", "args": arguments}


def create_chat_model(api_key: Optional[str] = None) -> BaseChatModel:
    provider = settings.llm_provider.lower()
    key = api_key or settings.llm_api_key
    if not key:
        raise ModelProviderError(f"An API key is required for the {provider} provider")

    if provider in {"groq", "openai", "lmstudio"} or provider.startswith("openai"):
        from langchain_openai import ChatOpenAI  # type: ignore

        kwargs: Dict[str, Any] = {
            "model": settings.llm_model,
            "temperature": settings.llm_temperature,
            "max_tokens": settings.llm_max_tokens,
            "api_key": key,
        }
        if settings.llm_api_base:
            kwargs["base_url"] = settings.llm_api_base
        log.info("initializing_chat_model", provider=provider, model=settings.llm_model)
        return ChatOpenAI(**kwargs)

    raise ModelProviderError(f"LLM provider not yet supported: {provider}")


@lru_cache(maxsize=16)
def get_chat_client(api_key: Optional[str] = None) -> ChatModelClient:
    """Process-wide client handle, created on first use for each API key."""
    return ChatModelClient(create_chat_model(api_key))
