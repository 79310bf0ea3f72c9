from __future__ import annotations

import json
from collections.abc import AsyncIterator

import pytest

from chatlog_agent.ai.agent import Agent, AgentConfig, history_from_dicts
from chatlog_agent.ai.client import LLMClient
from chatlog_agent.ai.prompt import prompt_text
from chatlog_agent.ai.tools.base import ToolContext
from chatlog_agent.ai.types import (
    ChatMessage,
    ChatOptions,
    ChatResponse,
    ChatStreamChunk,
    TokenUsage,
    ToolCall,
)
from chatlog_agent.errors import LLMError

from conftest import CHAT_ID, ScriptedLLMClient


def _usage(prompt: int = 10, completion: int = 5) -> TokenUsage:
    return TokenUsage(prompt, completion, prompt + completion)


def _structured_call(call_id: str, name: str, arguments: str = "{}") -> ChatResponse:
    return ChatResponse(
        content="",
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
        usage=_usage(),
    )


def _agent(client: LLMClient, registry, **kwargs) -> Agent:
    context = kwargs.pop("context", ToolContext(session_id=CHAT_ID))
    return Agent(client, registry, context, **kwargs)


# ── Blocking ───────────────────────────────────────────────────────────


async def test_fallback_tagged_tool_call(registry):
    client = ScriptedLLMClient(
        responses=[
            ChatResponse(
                content=(
                    "<think>I should search</think>"
                    '<tool_call>{"name": "search_messages", '
                    '"arguments": {"keywords": ["hiking"], "sender_id": 7}}</tool_call>'
                ),
                finish_reason="stop",
                usage=_usage(),
            ),
            ChatResponse(content="<think>done</think>Member 7 never mentioned hiking.", usage=_usage(20, 8)),
        ]
    )
    agent = _agent(client, registry)
    result = await agent.execute("Did member 7 talk about hiking?")

    assert result.content == "Member 7 never mentioned hiking."
    assert result.tools_used == ["search_messages"]
    assert result.tool_rounds == 1
    assert result.total_usage.total_tokens == 15 + 28

    second_request, _ = client.requests[1]
    assistant, tool_message = second_request[-2], second_request[-1]
    assert assistant.role == "assistant"
    assert assistant.tool_calls[0].id.startswith("fallback-")
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == assistant.tool_calls[0].id
    assert json.loads(tool_message.content)["total"] == 0


async def test_tagged_call_with_empty_arguments_runs_the_tool(registry):
    client = ScriptedLLMClient(
        responses=[
            ChatResponse(content='<tool_call>{"name": "get_recent_messages", "arguments": {}}</tool_call>'),
            ChatResponse(content="Bob asked everyone to bring snacks."),
        ]
    )
    result = await _agent(client, registry).execute("What happened lately?")

    assert result.content == "Bob asked everyone to bring snacks."
    assert result.tools_used == ["get_recent_messages"]
    tool_message = client.requests[1][0][-1]
    assert json.loads(tool_message.content)["total"] == 5


async def test_structured_calls_feed_tool_results_back(registry):
    client = ScriptedLLMClient(
        responses=[
            _structured_call("call_1", "get_member_stats"),
            ChatResponse(content="Alice talks the most.", usage=_usage()),
        ]
    )
    result = await _agent(client, registry).execute("Who talks the most?")

    assert result.content == "Alice talks the most."
    messages, options = client.requests[1]
    assert options.tools is not None
    assert messages[0].role == "system"
    assert messages[-1].tool_call_id == "call_1"
    assert "Alice" in messages[-1].content


async def test_failed_tool_is_reported_to_model(registry):
    client = ScriptedLLMClient(
        responses=[
            _structured_call("call_1", "get_time_stats", '{"type": "yearly"}'),
            ChatResponse(content="Sorry, that statistic is unavailable."),
        ]
    )
    result = await _agent(client, registry, locale="en-US").execute("Yearly stats?")

    assert result.tools_used == ["get_time_stats"]
    tool_message = client.requests[1][0][-1]
    assert tool_message.content.startswith("Error: ")


async def test_cancel_before_first_request(registry):
    client = ScriptedLLMClient()
    agent = _agent(client, registry)
    agent.cancel()

    result = await agent.execute("anything")

    assert result.content == ""
    assert result.tool_rounds == 0
    assert result.total_usage.total_tokens == 0
    assert client.requests == []


async def test_round_limit_forces_final_answer(registry):
    client = ScriptedLLMClient(
        responses=[
            _structured_call("call_1", "get_member_stats"),
            _structured_call("call_2", "get_recent_messages"),
            ChatResponse(content="Here is what I found.", usage=_usage()),
        ]
    )
    agent = _agent(client, registry, config=AgentConfig(max_tool_rounds=2))
    result = await agent.execute("Tell me everything")

    assert result.tool_rounds == 2
    assert result.content == "Here is what I found."
    final_messages, final_options = client.requests[-1]
    assert final_options.tools is None
    assert final_messages[-1].role == "user"
    assert final_messages[-1].content == prompt_text("round_limit_instruction", "zh-CN")


async def test_round_limit_never_returns_empty_answer(registry):
    client = ScriptedLLMClient(
        responses=[
            _structured_call("call_1", "get_member_stats"),
            ChatResponse(content="<think>nothing to add</think>"),
        ]
    )
    agent = _agent(client, registry, config=AgentConfig(max_tool_rounds=1), locale="en-US")
    result = await agent.execute("Tell me everything")

    assert result.tool_rounds <= 1
    assert result.content == prompt_text("empty_answer", "en-US")


async def test_history_is_copied_between_system_and_user(registry):
    history = history_from_dicts(
        [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "tool", "content": "ignored"},
        ]
    )
    client = ScriptedLLMClient(responses=[ChatResponse(content="ok")])
    await _agent(client, registry, history=history).execute("again")

    roles = [m.role for m in client.requests[0][0]]
    assert roles == ["system", "user", "assistant", "user"]
    assert len(history) == 2


# ── Streaming ──────────────────────────────────────────────────────────


async def test_stream_tool_round_then_answer(registry):
    client = ScriptedLLMClient(
        streams=[
            [
                ChatStreamChunk(
                    tool_calls=[ToolCall(id="c1", name="search_messages", arguments='{"keywords": ["hiking"]}')],
                    is_finished=True,
                    finish_reason="tool_calls",
                    usage=_usage(),
                ),
            ],
            [
                ChatStreamChunk(content="<think>ok</think>Two "),
                ChatStreamChunk(content="people."),
                ChatStreamChunk(is_finished=True, finish_reason="stop", usage=_usage()),
            ],
        ]
    )
    agent = _agent(client, registry, context=ToolContext(session_id=CHAT_ID, max_messages_limit=25))
    chunks = [chunk async for chunk in agent.stream("Who mentioned hiking?")]

    assert [c.type for c in chunks] == ["tool_start", "tool_result", "content", "content", "done"]
    assert chunks[0].tool_params == {"keywords": ["hiking"], "limit": 25}
    assert chunks[1].tool_result["total"] == 2
    assert "".join(c.content for c in chunks if c.type == "content") == "Two people."
    assert chunks[-1].usage.total_tokens == 30
    assert agent.last_result.content == "Two people."
    assert agent.last_result.tool_rounds == 1


async def test_stream_fallback_tags_are_not_shown(registry):
    client = ScriptedLLMClient(
        streams=[
            [
                ChatStreamChunk(content="Checking <tool"),
                ChatStreamChunk(content='_call>{"name": "get_member_stats", "arguments": {"top_n": 1}}</tool_call>'),
                ChatStreamChunk(is_finished=True, finish_reason="stop"),
            ],
            [
                ChatStreamChunk(content="Alice."),
                ChatStreamChunk(is_finished=True, finish_reason="stop"),
            ],
        ]
    )
    agent = _agent(client, registry)
    chunks = [chunk async for chunk in agent.stream("Top member?")]

    shown = "".join(c.content for c in chunks if c.type == "content")
    assert "<tool_call>" not in shown
    assert shown == "Checking Alice."
    assert agent.last_result.tools_used == ["get_member_stats"]


async def test_stream_tagged_call_with_empty_arguments(registry):
    client = ScriptedLLMClient(
        streams=[
            [
                ChatStreamChunk(content='<tool_call>{"name": "get_recent_messages", '),
                ChatStreamChunk(content='"arguments": {}}</tool_call>'),
                ChatStreamChunk(is_finished=True, finish_reason="stop"),
            ],
            [
                ChatStreamChunk(content="Snacks tonight."),
                ChatStreamChunk(is_finished=True, finish_reason="stop"),
            ],
        ]
    )
    agent = _agent(client, registry)
    chunks = [chunk async for chunk in agent.stream("What happened lately?")]

    assert [c.type for c in chunks] == ["tool_start", "tool_result", "content", "done"]
    assert chunks[0].tool_name == "get_recent_messages"
    assert "".join(c.content for c in chunks if c.type == "content") == "Snacks tonight."
    assert agent.last_result.tools_used == ["get_recent_messages"]


async def test_stream_thinking_is_never_emitted(registry):
    client = ScriptedLLMClient(
        streams=[
            [
                ChatStreamChunk(content="<think>reas"),
                ChatStreamChunk(content="oning</think>Hel"),
                ChatStreamChunk(content="lo"),
                ChatStreamChunk(is_finished=True, finish_reason="stop"),
            ]
        ]
    )
    agent = _agent(client, registry)
    chunks = [chunk async for chunk in agent.stream("Hi")]

    assert [c.content for c in chunks if c.type == "content"] == ["Hel", "lo"]
    assert agent.last_result.content == "Hello"


async def test_stream_cancel_mid_response_keeps_emitted_text(registry):
    client = ScriptedLLMClient(
        streams=[
            [
                ChatStreamChunk(content="Hello"),
                ChatStreamChunk(content=" world"),
                ChatStreamChunk(content=" again"),
                ChatStreamChunk(is_finished=True, finish_reason="stop"),
            ]
        ]
    )
    agent = _agent(client, registry)
    received = []
    async for chunk in agent.stream("Say hello"):
        received.append(chunk)
        if chunk.type == "content":
            agent.cancel()

    shown = "".join(c.content for c in received if c.type == "content")
    assert shown == "Hello"
    assert received[-1].type == "done"
    assert agent.last_result.content == shown


async def test_stream_cancelled_before_start_only_sends_done(registry):
    client = ScriptedLLMClient()
    agent = _agent(client, registry)
    agent.cancel()

    chunks = [chunk async for chunk in agent.stream("anything")]

    assert [c.type for c in chunks] == ["done"]
    assert agent.last_result.content == ""
    assert client.requests == []


async def test_execute_stream_callback(registry):
    client = ScriptedLLMClient(streams=[[ChatStreamChunk(content="Hi"), ChatStreamChunk(is_finished=True)]])
    seen = []
    result = await _agent(client, registry).execute_stream("hi", seen.append)

    assert result.content == "Hi"
    assert [c.type for c in seen] == ["content", "done"]


class FailingStreamClient(LLMClient):
    def __init__(self) -> None:
        super().__init__("failing")

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        raise LLMError("quota exceeded", status_code=429)

    async def chat_stream(self, messages: list[ChatMessage], options: ChatOptions) -> AsyncIterator[ChatStreamChunk]:
        yield ChatStreamChunk(content="Part")
        raise LLMError("Service overloaded", status_code=503)


async def test_stream_llm_error_emits_error_chunk_then_raises(registry):
    agent = _agent(FailingStreamClient(), registry)
    received = []
    with pytest.raises(LLMError):
        async for chunk in agent.stream("hi"):
            received.append(chunk)

    assert [c.type for c in received] == ["content", "error"]
    assert received[-1].error == "The model is currently overloaded. Please retry later."


async def test_blocking_llm_error_propagates(registry):
    with pytest.raises(LLMError):
        await _agent(FailingStreamClient(), registry).execute("hi")
