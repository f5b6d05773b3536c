"""
Language model client and tool definitions.
"""
from .client import ChatCompletion, ChatModelClient, TokenUsage, get_chat_client, to_langchain_messages
from .tools import (
    PACK_REPOSITORY_TOOL,
    TOOL_DEFINITIONS,
    PackRepositoryArgs,
    PackRepositoryCall,
    ToolCall,
    ToolCallRecord,
    ToolInvocation,
    parse_tool_invocation,
)

__all__ = [
    "ChatCompletion",
    "ChatModelClient",
    "PACK_REPOSITORY_TOOL",
    "PackRepositoryArgs",
    "PackRepositoryCall",
    "TOOL_DEFINITIONS",
    "ToolCall",
    "TokenUsage",
    "ToolCallRecord",
    "ToolInvocation",
    "get_chat_client",
    "parse_tool_invocation",
    "to_langchain_messages",
]
