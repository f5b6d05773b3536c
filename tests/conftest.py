from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from langchain_core.messages import AIMessage

from repochat.errors import FetchError, ModelProviderError
from repochat.ingestion import IngestionPipeline, RepositoryPacker, RevisionResolver
from repochat.ingestion.source import RepositoryLocation
from repochat.llm import ChatCompletion, ChatModelClient, TokenUsage
from repochat.storage import ContentCache

REPO_URL = "https://github.com/octo/demo"
HEAD_SHA = "0123456789abcdef0123456789abcdef01234567"


class StubResolver(RevisionResolver):
    """Resolver that never touches the network or git."""

    def __init__(self, remote: str = HEAD_SHA, checkout: str = HEAD_SHA) -> None:
        super().__init__(api_base="http://github.invalid", branches=["main"], timeout=1.0)
        self.remote = remote
        self.checkout = checkout
        self.remote_calls = 0
        self.checkout_calls = 0

    async def resolve_revision(self, location: RepositoryLocation) -> str:
        self.remote_calls += 1
        return self.remote

    async def resolve_checkout_revision(self, checkout_path: Path) -> str:
        self.checkout_calls += 1
        return self.checkout


class StubPacker(RepositoryPacker):
    """Packer that writes canned output instead of running a CLI."""

    def __init__(self, content: str = "packed repository text", error: Optional[Exception] = None) -> None:
        super().__init__(command_template="stub {source} {output}")
        self.content = content
        self.error = error
        self.sources: List[Path] = []

    async def pack(self, source: Path, output: Path) -> str:
        self.sources.append(source)
        assert source.is_dir(), "checkout should exist while packing"
        if self.error is not None:
            raise self.error
        output.write_text(self.content, encoding="utf-8")
        return self.content


class StubPipeline(IngestionPipeline):
    """Pipeline whose clone step fabricates a checkout on disk."""

    def __init__(self, *args, clone_error: Optional[str] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.clone_error = clone_error
        self.clones: List[Path] = []

    async def _clone(self, location: RepositoryLocation, destination: Path) -> None:
        self.clones.append(destination)
        destination.mkdir(parents=True)
        (destination / "README.md").write_text(f"# {location.name}\n", encoding="utf-8")
        if self.clone_error:
            raise FetchError(self.clone_error)


@pytest.fixture
def cache(tmp_path: Path) -> ContentCache:
    return ContentCache(cache_dir=tmp_path / "cache")


@pytest.fixture
def resolver() -> StubResolver:
    return StubResolver()


@pytest.fixture
def packer() -> StubPacker:
    return StubPacker()


@pytest.fixture
def pipeline(tmp_path: Path, cache: ContentCache, resolver: StubResolver, packer: StubPacker) -> StubPipeline:
    return StubPipeline(
        cache=cache,
        resolver=resolver,
        packer=packer,
        temp_dir=tmp_path / "temp",
    )


def completion(content: str = "", tool_calls=None, invalid_tool_calls=None, tokens: int = 10) -> ChatCompletion:
    message = AIMessage(
        content=content,
        tool_calls=tool_calls or [],
        invalid_tool_calls=invalid_tool_calls or [],
    )
    return ChatCompletion(
        message=message,
        usage=TokenUsage(prompt_tokens=tokens, completion_tokens=1, total_tokens=tokens + 1),
        finish_reason="tool_calls" if tool_calls else "stop",
    )


def pack_call(call_id: str, repo_url: str = REPO_URL, **extra: Any) -> Dict[str, Any]:
    return {"id": call_id, "name": "pack_repository", "args": {"repoUrl": repo_url, **extra}}


class StubClient(ChatModelClient):
    """Replays scripted completions and records every request."""

    def __init__(self, replies: List[ChatCompletion]) -> None:
        super().__init__(model=None)  # type: ignore[arg-type]
        self.replies = list(replies)
        self.requests: List[Dict[str, Any]] = []

    async def chat(self, messages, tools=None, context=None) -> ChatCompletion:
        self.requests.append({"messages": list(messages), "tools": tools, "context": context})
        if not self.replies:
            raise ModelProviderError("Model API failed: no scripted reply left")
        return self.replies.pop(0)
