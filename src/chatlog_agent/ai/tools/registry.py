"""Tool registry: definitions for the model and batched execution of its calls."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Optional

from chatlog_agent.ai.tools.base import Tool, ToolContext
from chatlog_agent.ai.types import ToolCall, ToolOutcome
from chatlog_agent.errors import ToolNotFoundError
from chatlog_agent.log import get_logger

if TYPE_CHECKING:
    from chatlog_agent.rag.pipeline import SemanticPipeline
    from chatlog_agent.storage.base import MessageStore

logger = get_logger(__name__)


def parse_tool_arguments(arguments: Optional[str]) -> Optional[dict[str, Any]]:
    """Decode a call's JSON arguments; ``None`` when they are not a JSON object."""
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get_all_tool_definitions(self) -> list[dict[str, Any]]:
        return [tool.to_api_dict() for tool in self._tools.values()]

    def display_params(self, call: ToolCall, context: ToolContext) -> Optional[dict[str, Any]]:
        """Arguments of ``call`` as they will effectively be applied, for progress events.

        The configured message limit replaces ``limit`` for message-retrieval
        tools, and search/recent tools carry the default time filter as
        ``_timeFilter``.
        """
        params = parse_tool_arguments(call.arguments)
        tool = self._tools.get(call.name)
        if params is None or tool is None:
            return params

        params = dict(params)
        if tool.honors_message_limit and context.max_messages_limit:
            params["limit"] = context.max_messages_limit
        if tool.uses_default_time_filter and context.time_filter is not None:
            params["_timeFilter"] = {
                "startTs": context.time_filter.start_ts,
                "endTs": context.time_filter.end_ts,
            }
        return params

    async def execute_tool(self, call: ToolCall, context: ToolContext) -> ToolOutcome:
        """Run one call; every failure is captured in the returned outcome."""
        try:
            tool = self._tools.get(call.name)
            if tool is None:
                raise ToolNotFoundError(call.name)

            params = parse_tool_arguments(call.arguments)
            if params is None:
                raise ValueError(f"Invalid JSON arguments for {call.name}: {call.arguments[:200]}")

            result = await tool.execute(params, context)
            return ToolOutcome(success=True, result=result)
        except Exception as e:
            logger.error("tool_execution_error", tool=call.name, error=str(e))
            return ToolOutcome(success=False, error=str(e))

    async def execute_tool_calls(self, calls: list[ToolCall], context: ToolContext) -> list[ToolOutcome]:
        """Run a batch concurrently; outcomes come back in the order of ``calls``."""
        if not calls:
            return []
        return list(await asyncio.gather(*(self.execute_tool(c, context) for c in calls)))


def build_default_registry(store: MessageStore, pipeline: SemanticPipeline) -> ToolRegistry:
    """Register the built-in tools."""
    from chatlog_agent.ai.tools.members import GroupMembersTool, MemberNameHistoryTool, MemberStatsTool
    from chatlog_agent.ai.tools.messages import (
        ConversationBetweenTool,
        MessageContextTool,
        RecentMessagesTool,
        SearchMessagesTool,
    )
    from chatlog_agent.ai.tools.semantic import SemanticSearchTool
    from chatlog_agent.ai.tools.sessions import SearchSessionsTool, SessionMessagesTool, SessionSummariesTool
    from chatlog_agent.ai.tools.stats import TimeStatsTool

    registry = ToolRegistry()
    registry.register(SearchMessagesTool(store))
    registry.register(RecentMessagesTool(store))
    registry.register(MemberStatsTool(store))
    registry.register(TimeStatsTool(store))
    registry.register(GroupMembersTool(store))
    registry.register(MemberNameHistoryTool(store))
    registry.register(ConversationBetweenTool(store))
    registry.register(MessageContextTool(store))
    registry.register(SearchSessionsTool(store))
    registry.register(SessionMessagesTool(store))
    registry.register(SessionSummariesTool(store))
    registry.register(SemanticSearchTool(pipeline))
    logger.info("tool_registry_ready", tool_count=len(registry.all_tools()))
    return registry
