from __future__ import annotations

from chatlog_agent.ai.tools.base import ToolContext
from chatlog_agent.ai.types import ToolCall

from conftest import CHAT_ID


def _call(name: str, arguments: str = "{}") -> ToolCall:
    return ToolCall(id=f"call-{name}", name=name, arguments=arguments)


async def test_search_messages_payload(registry):
    outcome = await registry.execute_tool(
        _call("search_messages", '{"keywords": ["hiking", "snacks"]}'), ToolContext(session_id=CHAT_ID, locale="en-US")
    )
    assert outcome.success
    result = outcome.result
    assert result["total"] == 3
    assert result["returned"] == 3
    assert result["timeRange"] == "All time"
    assert result["messages"][0].startswith("#2 ")
    assert result["messages"][-1].endswith("Alice: bring snacks")


async def test_user_message_limit_overrides_model_limit(registry):
    context = ToolContext(session_id=CHAT_ID, max_messages_limit=1)
    outcome = await registry.execute_tool(_call("get_recent_messages", '{"limit": 50}'), context)
    assert outcome.result["total"] == 5
    assert outcome.result["returned"] == 1
    assert outcome.result["messages"][0].endswith("bring snacks")


async def test_member_stats_lines(registry):
    outcome = await registry.execute_tool(_call("get_member_stats"), ToolContext(session_id=CHAT_ID))
    assert outcome.result == {
        "totalMembers": 2,
        "topMembers": ["1. Alice 3条(60.0%)", "2. Bobby 2条(40.0%)"],
    }


async def test_group_members_search_matches_alias(registry):
    outcome = await registry.execute_tool(
        _call("get_group_members", '{"search": "ali"}'), ToolContext(session_id=CHAT_ID, locale="en-US")
    )
    assert outcome.result["totalMembers"] == 2
    assert outcome.result["members"] == ["1|wxid_alice|Alice|3|Alias:Ali"]


async def test_member_name_history(registry):
    context = ToolContext(session_id=CHAT_ID, locale="en-US")
    outcome = await registry.execute_tool(_call("get_member_name_history", '{"member_id": 2}'), context)
    assert outcome.result["member"] == "2|wxid_bob|Bobby"
    assert outcome.result["accountNameHistory"] == "No change record"
    assert outcome.result["groupNicknameHistory"][0].startswith("Bob the Builder (")
    assert outcome.result["groupNicknameHistory"][1].endswith("~ Present)")

    missing = await registry.execute_tool(_call("get_member_name_history", '{"member_id": 99}'), context)
    assert missing.result == {"error": "Member not found", "member_id": 99}


async def test_conversation_between_and_missing_member(registry):
    context = ToolContext(session_id=CHAT_ID, locale="en-US")
    outcome = await registry.execute_tool(
        _call("get_conversation_between", '{"member_id_1": 1, "member_id_2": 2, "limit": 2}'), context
    )
    assert outcome.result["total"] == 5
    assert outcome.result["returned"] == 2
    assert (outcome.result["member1"], outcome.result["member2"]) == ("Alice", "Bobby")

    none = await registry.execute_tool(
        _call("get_conversation_between", '{"member_id_1": 1, "member_id_2": 42}'), context
    )
    assert none.result["error"] == "No conversation found between these two members"

    invalid = await registry.execute_tool(_call("get_conversation_between", '{"member_id_1": 1}'), context)
    assert not invalid.success


async def test_message_context(registry):
    context = ToolContext(session_id=CHAT_ID)
    outcome = await registry.execute_tool(
        _call("get_message_context", '{"message_ids": [3], "context_size": 1}'), context
    )
    assert outcome.result["totalMessages"] == 3
    assert [line.split()[0] for line in outcome.result["messages"]] == ["#2", "#3", "#4"]

    missing = await registry.execute_tool(_call("get_message_context", '{"message_ids": [999]}'), context)
    assert "error" in missing.result


async def test_time_stats(registry):
    context = ToolContext(session_id=CHAT_ID, locale="en-US")
    hourly = await registry.execute_tool(_call("get_time_stats", '{"type": "hourly"}'), context)
    assert hourly.result["peakHour"] == "10:00 (3)"
    assert len(hourly.result["distribution"]) == 24

    unknown = await registry.execute_tool(_call("get_time_stats", '{"type": "yearly"}'), context)
    assert not unknown.success


async def test_sessions_tools(registry):
    context = ToolContext(session_id=CHAT_ID, locale="en-US")
    found = await registry.execute_tool(_call("search_sessions", '{"keywords": ["hiking"]}'), context)
    assert found.result["total"] == 1
    assert found.result["sessions"][0]["messageCount"] == "3 messages [complete]"
    assert len(found.result["sessions"][0]["preview"]) == 3

    none = await registry.execute_tool(_call("search_sessions", '{"keywords": ["karaoke"]}'), context)
    assert none.result == {"total": 0, "message": "No matching sessions found"}

    messages = await registry.execute_tool(_call("get_session_messages", '{"session_id": 2}'), context)
    assert messages.result["participants"] == ["Bobby", "Alice"]
    assert messages.result["returnedCount"] == 2

    missing = await registry.execute_tool(_call("get_session_messages", '{"session_id": 77}'), context)
    assert missing.result == {"error": "Session not found", "sessionId": 77}


async def test_session_summaries_only_lists_summarized(registry, store):
    context = ToolContext(session_id=CHAT_ID, locale="en-US")
    await store.set_session_summary(CHAT_ID, 1, "Planning a hiking trip")
    outcome = await registry.execute_tool(_call("get_session_summaries"), context)
    assert outcome.result["total"] == 1
    assert [s["sessionId"] for s in outcome.result["sessions"]] == [1]
    assert outcome.result["sessions"][0]["summary"] == "Planning a hiking trip"
    assert outcome.result["sessions"][0]["participants"] == ["Alice", "Bobby"]


async def test_semantic_search_reports_disabled(registry):
    outcome = await registry.execute_tool(
        _call("semantic_search_messages", '{"query": "trip plans"}'), ToolContext(session_id=CHAT_ID, locale="en-US")
    )
    assert outcome.success
    assert outcome.result["error"].startswith("Semantic search is not enabled")
