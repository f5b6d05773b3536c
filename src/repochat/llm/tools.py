"""
Tool definitions offered to the language model and their typed variants.

The model sees the OpenAI function-calling schema below. When it asks for a
tool, the raw request is parsed into a tagged variant that carries a
validated argument record; unknown tool names are rejected explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import InputValidationError, UnknownToolError

PACK_REPOSITORY_TOOL = "pack_repository"

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": PACK_REPOSITORY_TOOL,
            "description": (
                "Pack a GitHub repository into context for analysis. Use this when the "
                "user provides a GitHub URL or asks to analyze a repository."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "repoUrl": {
                        "type": "string",
                        "description": "The GitHub repository URL (e.g., https://github.com/user/repo)",
                    },
                    "forceRefresh": {
                        "type": "boolean",
                        "description": "Force re-packing even if cached version exists",
                        "default": False,
                    },
                },
                "required": ["repoUrl"],
            },
        },
    }
]


@dataclass
class ToolInvocation:
    """A tool call exactly as the model emitted it."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class PackRepositoryArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    repo_url: str = Field(alias="repoUrl", min_length=1)
    force_refresh: bool = Field(default=False, alias="forceRefresh")


@dataclass(frozen=True)
class PackRepositoryCall:
    id: str
    arguments: PackRepositoryArgs
    kind: Literal["pack_repository"] = PACK_REPOSITORY_TOOL


# Extend with further call variants as new tools are offered.
ToolCall = PackRepositoryCall


def parse_tool_invocation(invocation: ToolInvocation) -> ToolCall:
    """Turn a raw invocation into its typed variant or raise."""
    if invocation.error:
        raise InputValidationError(
            f"Invalid arguments for tool '{invocation.name}': {invocation.error}"
        )
    if invocation.name == PACK_REPOSITORY_TOOL:
        try:
            args = PackRepositoryArgs.model_validate(invocation.arguments or {})
        except ValidationError as exc:
            raise InputValidationError(
                f"Invalid arguments for tool '{invocation.name}': {exc.errors()[0]['msg']}"
            ) from exc
        return PackRepositoryCall(id=invocation.id, arguments=args)
    raise UnknownToolError(f"Unknown tool: {invocation.name}")


@dataclass
class ToolCallRecord:
    """Per-invocation outcome returned to the caller alongside the answer."""

    tool: str
    arguments: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"tool": self.tool, "arguments": self.arguments}
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        return payload
