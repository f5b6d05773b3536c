import asyncio
import json
from typing import List, Optional

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from repochat.errors import InputValidationError, ModelProviderError
from repochat.llm import ChatModelClient
from repochat.services import ConversationOrchestrator
from repochat.storage import make_cache_key

from conftest import HEAD_SHA, REPO_URL, StubClient, StubPacker, StubPipeline, completion, pack_call


def _orchestrator(pipeline: StubPipeline, client: StubClient) -> ConversationOrchestrator:
    return ConversationOrchestrator(pipeline=pipeline, client=client)


def test_plain_answer_without_tools(pipeline: StubPipeline) -> None:
    client = StubClient([completion("Hello there", tokens=7)])

    result = asyncio.run(_orchestrator(pipeline, client).chat("Hi"))

    assert result.response == "Hello there"
    assert result.tool_calls == []
    assert result.cache_key is None
    assert result.usage.total_tokens == 8
    assert result.to_dict() == {
        "response": "Hello there",
        "usage": {"promptTokens": 7, "completionTokens": 1, "totalTokens": 8},
    }
    request = client.requests[0]
    assert request["tools"] is not None
    assert request["context"] is None
    assert isinstance(request["messages"][-1], HumanMessage)


def test_tool_call_packs_repository_and_reasks_with_context(
    pipeline: StubPipeline, packer: StubPacker
) -> None:
    client = StubClient(
        [
            completion("", tool_calls=[pack_call("call_1")]),
            completion("The repository is a demo.", tokens=50),
        ]
    )

    result = asyncio.run(_orchestrator(pipeline, client).chat("Explain github.com/octo/demo"))

    expected_key = make_cache_key(REPO_URL, HEAD_SHA)
    assert result.response == "The repository is a demo."
    assert result.cache_key == expected_key
    assert result.usage.total_tokens == 51
    assert len(result.tool_calls) == 1
    record = result.tool_calls[0]
    assert record.ok
    assert record.result["cacheKey"] == expected_key
    assert record.result["fromCache"] is False

    assert len(client.requests) == 2
    follow_up = client.requests[1]
    assert follow_up["tools"] is None
    assert follow_up["context"] == packer.content
    assistant, tool_message = follow_up["messages"][-2:]
    assert isinstance(assistant, AIMessage)
    assert [call["id"] for call in assistant.tool_calls] == ["call_1"]
    assert isinstance(tool_message, ToolMessage)
    assert tool_message.tool_call_id == "call_1"
    assert json.loads(tool_message.content)["cacheKey"] == expected_key


def test_failed_tool_call_is_reported_without_second_request(
    tmp_path, cache, resolver
) -> None:
    pipeline = StubPipeline(
        cache=cache,
        resolver=resolver,
        packer=StubPacker(),
        temp_dir=tmp_path / "temp",
        clone_error="Failed to clone repository: repository not found",
    )
    client = StubClient([completion("", tool_calls=[pack_call("call_1")])])

    result = asyncio.run(_orchestrator(pipeline, client).chat("Explain it"))

    assert len(client.requests) == 1
    assert result.cache_key is None
    assert result.tool_failures == 1
    assert "repository not found" in result.tool_calls[0].error
    assert "repository not found" in result.response
    assert result.to_dict()["toolCalls"][0]["error"].startswith("Failed to clone")


def test_model_text_is_kept_when_tool_fails(pipeline: StubPipeline) -> None:
    client = StubClient(
        [completion("Let me look.", tool_calls=[pack_call("call_1", "https://gitlab.com/a/b")])]
    )

    result = asyncio.run(_orchestrator(pipeline, client).chat("Explain it"))

    assert result.response == "Let me look."
    assert "Only GitHub repository URLs" in result.tool_calls[0].error


def test_unknown_tool_is_rejected(pipeline: StubPipeline) -> None:
    client = StubClient(
        [completion("", tool_calls=[{"id": "call_9", "name": "delete_everything", "args": {}}])]
    )

    result = asyncio.run(_orchestrator(pipeline, client).chat("Do something"))

    assert result.tool_calls[0].error == "Unknown tool: delete_everything"
    assert pipeline.clones == []
    assert len(client.requests) == 1


def test_unparseable_arguments_are_recorded(pipeline: StubPipeline) -> None:
    client = StubClient(
        [
            completion(
                "",
                invalid_tool_calls=[
                    {"id": "call_2", "name": "pack_repository", "args": "{oops", "error": "bad json"}
                ],
            )
        ]
    )

    result = asyncio.run(_orchestrator(pipeline, client).chat("Pack it"))

    record = result.tool_calls[0]
    assert record.tool == "pack_repository"
    assert "bad json" in record.error
    assert pipeline.clones == []


def test_multiple_tool_calls_run_in_order(pipeline: StubPipeline) -> None:
    client = StubClient(
        [
            completion(
                "",
                tool_calls=[
                    pack_call("call_1", "https://github.com/octo/other", forceRefresh=False),
                    pack_call("call_2", "https://gitlab.com/octo/demo"),
                    pack_call("call_3"),
                ],
            ),
            completion("first answer"),
            completion("final answer"),
        ]
    )

    result = asyncio.run(_orchestrator(pipeline, client).chat("Compare them"))

    assert [record.ok for record in result.tool_calls] == [True, False, True]
    assert result.response == "final answer"
    assert result.cache_key == make_cache_key(REPO_URL, HEAD_SHA)
    assert len(client.requests) == 3


def test_cached_context_is_preloaded(pipeline: StubPipeline) -> None:
    key = make_cache_key(REPO_URL, HEAD_SHA)
    asyncio.run(pipeline.cache.write(key, "cached repo text", repo_url=REPO_URL))
    client = StubClient([completion("Uses the context")])

    result = asyncio.run(_orchestrator(pipeline, client).chat("What does it do?", cache_key=key))

    assert client.requests[0]["context"] == "cached repo text"
    assert result.cache_key == key


@pytest.mark.parametrize("stale_key", ["a" * 64, "not-a-key"])
def test_stale_cache_key_is_discarded(pipeline: StubPipeline, stale_key: str) -> None:
    client = StubClient([completion("No context")])

    result = asyncio.run(_orchestrator(pipeline, client).chat("Hello", cache_key=stale_key))

    assert client.requests[0]["context"] is None
    assert result.cache_key is None
    assert "cacheKey" not in result.to_dict()


def test_history_is_replayed_before_new_message(pipeline: StubPipeline) -> None:
    client = StubClient([completion("ok")])
    history = [
        {"role": "user", "content": "earlier question"},
        {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {
                    "id": "call_0",
                    "type": "function",
                    "function": {"name": "pack_repository", "arguments": json.dumps({"repoUrl": REPO_URL})},
                }
            ],
        },
        {"role": "tool", "content": "{}", "tool_call_id": "call_0"},
        {"role": "assistant", "content": "earlier answer"},
    ]

    asyncio.run(_orchestrator(pipeline, client).chat("follow up", history=history))

    messages = client.requests[0]["messages"]
    assert [type(message) for message in messages] == [
        HumanMessage,
        AIMessage,
        ToolMessage,
        AIMessage,
        HumanMessage,
    ]
    assert messages[1].tool_calls[0]["args"] == {"repoUrl": REPO_URL}
    assert messages[-1].content == "follow up"


def test_unknown_history_role_is_rejected(pipeline: StubPipeline) -> None:
    client = StubClient([completion("unused")])

    with pytest.raises(InputValidationError):
        asyncio.run(
            _orchestrator(pipeline, client).chat("hi", history=[{"role": "narrator", "content": "x"}])
        )


def test_empty_message_is_rejected_before_model_call(pipeline: StubPipeline) -> None:
    client = StubClient([])

    with pytest.raises(InputValidationError, match="Message is required"):
        asyncio.run(_orchestrator(pipeline, client).chat("   "))
    assert client.requests == []


def test_model_failure_propagates(pipeline: StubPipeline) -> None:
    client = StubClient([])

    with pytest.raises(ModelProviderError):
        asyncio.run(_orchestrator(pipeline, client).chat("Hi"))


def test_api_key_selects_client_from_factory(pipeline: StubPipeline) -> None:
    keyed = StubClient([completion("from keyed client")])
    seen: List[Optional[str]] = []

    def factory(api_key: Optional[str]) -> ChatModelClient:
        seen.append(api_key)
        return keyed

    orchestrator = ConversationOrchestrator(
        pipeline=pipeline, client=StubClient([]), client_factory=factory
    )
    result = asyncio.run(orchestrator.chat("Hi", api_key="user-key"))

    assert result.response == "from keyed client"
    assert seen == ["user-key"]


def test_system_prompt_embeds_context() -> None:
    from repochat.llm.client import build_system_message

    with_context = build_system_message("packed text")
    without_context = build_system_message(None)

    assert isinstance(with_context, SystemMessage)
    assert "<REPO_CONTEXT>\npacked text\n</REPO_CONTEXT>" in with_context.content
    assert "REPO_CONTEXT" not in without_context.content


def test_unreadable_cached_context_is_discarded(pipeline: StubPipeline) -> None:
    key = make_cache_key(REPO_URL, HEAD_SHA)
    (pipeline.cache.cache_dir / f"{key}.txt").write_bytes(b"\xff\xfe not utf-8")
    client = StubClient([completion("ok")])

    result = asyncio.run(_orchestrator(pipeline, client).chat("hi", cache_key=key))

    assert result.response == "ok"
    assert result.cache_key is None
    assert client.requests[0]["context"] is None
