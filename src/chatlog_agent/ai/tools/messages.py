"""Message retrieval tools: keyword search, recent window, pairwise conversation, context."""

from __future__ import annotations

from typing import Any

from chatlog_agent.ai.tools.base import Tool, ToolContext
from chatlog_agent.ai.tools.common import (
    as_int,
    as_str_list,
    effective_limit,
    format_message_compact,
    format_time_range,
    parse_extended_time_params,
    t,
    time_param_properties,
)
from chatlog_agent.storage.base import MessageStore

MAX_SEARCH_LIMIT = 5000


class SearchMessagesTool(Tool):
    """Keyword / sender / time filtered message search."""

    honors_message_limit = True
    uses_default_time_filter = True

    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "search_messages"

    @property
    def description(self) -> str:
        return (
            "Search chat messages by keywords. Use when the user wants messages about a specific "
            "topic or keyword. Can be narrowed by time range and sender, down to the minute."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "keywords": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": (
                        "Keywords, OR-matched (a message containing any keyword matches). "
                        "Pass [] to filter by sender only"
                    ),
                },
                "sender_id": {
                    "type": "number",
                    "description": "Member id of the sender, obtained from get_group_members",
                },
                "limit": {
                    "type": "number",
                    "description": f"Maximum number of messages to return, default 100, max {MAX_SEARCH_LIMIT}",
                },
                **time_param_properties(),
            },
            "required": ["keywords"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        limit = min(effective_limit(params, context.max_messages_limit, 100), MAX_SEARCH_LIMIT)
        time_filter = parse_extended_time_params(params, context.time_filter)

        result = await self._store.search_messages(
            context.session_id,
            as_str_list(params.get("keywords")),
            time_filter,
            limit,
            0,
            as_int(params.get("sender_id")),
        )
        return {
            "total": result.total,
            "returned": len(result.messages),
            "timeRange": format_time_range(time_filter, context.locale),
            "messages": [format_message_compact(m, context.locale) for m in result.messages],
        }


class RecentMessagesTool(Tool):
    """Messages from a time window, for overview questions."""

    honors_message_limit = True
    uses_default_time_filter = True

    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_recent_messages"

    @property
    def description(self) -> str:
        return (
            "Get chat messages from a time period. Use for overview questions such as "
            '"what has everyone been talking about lately" or "what did the group discuss in October".'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": "Maximum number of messages to return, default 100 (keep small to save tokens)",
                },
                **time_param_properties(),
            },
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        limit = effective_limit(params, context.max_messages_limit, 100)
        time_filter = parse_extended_time_params(params, context.time_filter)

        result = await self._store.get_recent_messages(context.session_id, time_filter, limit)
        return {
            "total": result.total,
            "returned": len(result.messages),
            "timeRange": format_time_range(time_filter, context.locale),
            "messages": [format_message_compact(m, context.locale) for m in result.messages],
        }


class ConversationBetweenTool(Tool):
    honors_message_limit = True

    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_conversation_between"

    @property
    def description(self) -> str:
        return (
            "Get the messages exchanged between two members. Use for questions like "
            '"what did A and B talk about". Member ids come from get_group_members.'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "member_id_1": {"type": "number", "description": "Database id of the first member"},
                "member_id_2": {"type": "number", "description": "Database id of the second member"},
                "limit": {"type": "number", "description": "Maximum number of messages to return, default 100"},
                **time_param_properties(),
            },
            "required": ["member_id_1", "member_id_2"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        member_id_1 = as_int(params.get("member_id_1"))
        member_id_2 = as_int(params.get("member_id_2"))
        if member_id_1 is None or member_id_2 is None:
            raise ValueError("member_id_1 and member_id_2 are required")

        limit = effective_limit(params, context.max_messages_limit, 100)
        time_filter = parse_extended_time_params(params, context.time_filter)

        result = await self._store.get_conversation_between(
            context.session_id, member_id_1, member_id_2, time_filter, limit
        )
        if not result.messages:
            return {
                "error": t("no_conversation", context.locale),
                "member1Id": member_id_1,
                "member2Id": member_id_2,
            }

        return {
            "total": result.total,
            "returned": len(result.messages),
            "member1": result.member1_name,
            "member2": result.member2_name,
            "timeRange": format_time_range(time_filter, context.locale),
            "conversation": [format_message_compact(m, context.locale) for m in result.messages],
        }


class MessageContextTool(Tool):
    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_message_context"

    @property
    def description(self) -> str:
        return (
            "Get the messages surrounding one or more message ids, e.g. "
            '"what were people talking about around this message". Supports batches of ids.'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message_ids": {
                    "type": "array",
                    "items": {"type": "number"},
                    "description": "Message ids (the #id prefix in results of search_messages and similar tools)",
                },
                "context_size": {
                    "type": "number",
                    "description": "How many messages to fetch before and after each id, default 20",
                },
            },
            "required": ["message_ids"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        raw_ids = params.get("message_ids")
        if not isinstance(raw_ids, list):
            raw_ids = [raw_ids]
        message_ids = [i for i in (as_int(v) for v in raw_ids) if i is not None]
        context_size = as_int(params.get("context_size")) or 20

        messages = await self._store.get_message_context(context.session_id, message_ids, context_size)
        if not messages:
            return {
                "error": t("no_message_context", context.locale),
                "messageIds": message_ids,
            }

        return {
            "totalMessages": len(messages),
            "contextSize": context_size,
            "requestedMessageIds": message_ids,
            "messages": [format_message_compact(m, context.locale) for m in messages],
        }
