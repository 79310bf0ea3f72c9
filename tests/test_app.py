from __future__ import annotations

import pytest

from chatlog_agent.ai.types import ChatResponse, ChatStreamChunk, TokenUsage, ToolCall
from chatlog_agent.app import ChatlogAgentApp
from chatlog_agent.config import AppConfig, StorageConfig

from conftest import CHAT_ID, ScriptedLLMClient


def _config(tmp_path) -> AppConfig:
    return AppConfig(
        storage=StorageConfig(
            db_dir=str(tmp_path / "databases"),
            vector_db_path=str(tmp_path / "ai" / "vectors.db"),
            embedding_config_path=str(tmp_path / "ai" / "embedding-config.json"),
        )
    )


@pytest.fixture
async def app_factory(tmp_path, store):
    created: list[ChatlogAgentApp] = []

    async def _make(client: ScriptedLLMClient) -> ChatlogAgentApp:
        app = ChatlogAgentApp(_config(tmp_path), llm_client=client)
        await app.start()
        created.append(app)
        return app

    yield _make
    for app in created:
        await app.stop()


async def test_ask_runs_tools_against_chat_database(app_factory):
    client = ScriptedLLMClient(
        responses=[
            ChatResponse(
                tool_calls=[ToolCall(id="c1", name="get_group_members", arguments="{}")],
                finish_reason="tool_calls",
                usage=TokenUsage(10, 2, 12),
            ),
            ChatResponse(content="Alice and Bob are in this chat.", usage=TokenUsage(30, 8, 38)),
        ]
    )
    app = await app_factory(client)

    result = await app.ask(CHAT_ID, "who is here?", request_id="req-1", locale="en-US")

    assert result.content == "Alice and Bob are in this chat."
    assert result.tools_used == ["get_group_members"]
    assert result.total_usage.total_tokens == 50
    tool_message = client.requests[1][0][-1]
    assert tool_message.role == "tool"
    assert "Alice" in tool_message.content and "Bobby" in tool_message.content
    assert app.runs.active_ids == []


async def test_ask_stream_and_vector_stats(app_factory):
    client = ScriptedLLMClient(
        streams=[[ChatStreamChunk(content="Nothing much."), ChatStreamChunk(is_finished=True, finish_reason="stop")]]
    )
    app = await app_factory(client)

    chunks = [chunk async for chunk in app.ask_stream(CHAT_ID, "anything new?")]

    assert [c.type for c in chunks] == ["content", "done"]
    assert chunks[0].content == "Nothing much."

    stats = await app.vector_stats()
    assert stats.enabled is False
    assert stats.count == 0


async def test_abort_unknown_request(app_factory):
    app = await app_factory(ScriptedLLMClient())
    assert app.abort("missing") is False
