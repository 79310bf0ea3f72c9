"""Chat-session tools: session search, full session transcript, summaries."""

from __future__ import annotations

from typing import Any

from chatlog_agent.ai.tools.base import Tool, ToolContext
from chatlog_agent.ai.tools.common import (
    as_int,
    as_str_list,
    effective_limit,
    format_message_compact,
    format_time_range,
    format_timestamp,
    parse_extended_time_params,
    t,
    time_param_properties,
)
from chatlog_agent.storage.base import MessageStore

SESSION_PREVIEW_COUNT = 5


def _session_time(start_ts: int, end_ts: int, locale: str) -> str:
    return f"{format_timestamp(start_ts, locale)} ~ {format_timestamp(end_ts, locale)}"


class SearchSessionsTool(Tool):
    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "search_sessions"

    @property
    def description(self) -> str:
        return (
            "Search chat sessions (conversation segments split automatically by gaps between messages). "
            "Use to find discussions of a topic or count conversations in a period. "
            f"Returns matching sessions with a preview of their first {SESSION_PREVIEW_COUNT} messages."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "keywords": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional keywords; only sessions containing any of them are returned",
                },
                "limit": {"type": "number", "description": "Maximum number of sessions to return, default 20"},
                **time_param_properties(include_hour=False),
            },
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        limit = as_int(params.get("limit")) or 20
        time_filter = parse_extended_time_params(params, context.time_filter)
        locale = context.locale

        sessions = await self._store.search_sessions(
            context.session_id,
            as_str_list(params.get("keywords")) or None,
            time_filter,
            limit,
            SESSION_PREVIEW_COUNT,
        )
        if not sessions:
            return {"total": 0, "message": t("no_sessions", locale)}

        complete_label = t("complete", locale)
        msg_suffix = t("session_msg_suffix", locale)
        return {
            "total": len(sessions),
            "timeRange": format_time_range(time_filter, locale),
            "sessions": [
                {
                    "sessionId": s.id,
                    "time": _session_time(s.start_ts, s.end_ts, locale),
                    "messageCount": f"{s.message_count}{msg_suffix}"
                    + (f" [{complete_label}]" if s.is_complete else ""),
                    "preview": [format_message_compact(m, locale) for m in s.preview_messages],
                }
                for s in sessions
            ],
        }


class SessionMessagesTool(Tool):
    honors_message_limit = True

    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_session_messages"

    @property
    def description(self) -> str:
        return (
            "Get the full message list of one chat session. Use after search_sessions to read "
            "the whole conversation. Returns the messages and the participants."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "session_id": {
                    "type": "number",
                    "description": "Chat session id, obtained from search_sessions",
                },
                "limit": {
                    "type": "number",
                    "description": "Maximum number of messages to return, default 500; lower it for very long sessions",
                },
            },
            "required": ["session_id"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        chat_session_id = as_int(params.get("session_id"))
        limit = effective_limit(params, context.max_messages_limit, 500)
        locale = context.locale

        result = None
        if chat_session_id is not None:
            result = await self._store.get_session_messages(context.session_id, chat_session_id, limit)
        if result is None:
            return {"error": t("session_not_found", locale), "sessionId": params.get("session_id")}

        return {
            "sessionId": result.session_id,
            "time": _session_time(result.start_ts, result.end_ts, locale),
            "messageCount": result.message_count,
            "returnedCount": result.returned_count,
            "participants": result.participants,
            "messages": [format_message_compact(m, locale) for m in result.messages],
        }


class SessionSummariesTool(Tool):
    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_session_summaries"

    @property
    def description(self) -> str:
        return (
            "Get summaries of past chat sessions to see which topics were discussed. Use for overview "
            'questions like "has the group ever talked about travelling", optionally filtered by keywords. '
            "Follow up with get_session_messages for details."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "keywords": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Keywords to look for in the summaries (OR-matched)",
                },
                "limit": {"type": "number", "description": "Maximum number of sessions to return, default 20"},
                **time_param_properties(include_hour=False),
            },
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        limit = as_int(params.get("limit")) or 20
        time_filter = parse_extended_time_params(params, context.time_filter)
        locale = context.locale

        # Over-fetch so keyword filtering still leaves enough rows.
        sessions = await self._store.get_session_summaries(context.session_id, limit * 2, time_filter)
        if not sessions:
            return {"message": t("no_summaries", locale)}

        keywords = [k.lower() for k in as_str_list(params.get("keywords"))]
        if keywords:
            sessions = [s for s in sessions if s.summary and any(k in s.summary.lower() for k in keywords)]
        sessions = [s for s in sessions if s.summary]
        limited = sessions[:limit]

        return {
            "total": len(sessions),
            "returned": len(limited),
            "timeRange": format_time_range(time_filter, locale),
            "sessions": [
                {
                    "sessionId": s.id,
                    "time": _session_time(s.start_ts, s.end_ts, locale),
                    "messageCount": s.message_count,
                    "participants": s.participants,
                    "summary": s.summary,
                }
                for s in limited
            ],
        }
