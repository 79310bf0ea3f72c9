"""Embedding-based semantic search over chat sessions."""

from __future__ import annotations

from typing import Any

from chatlog_agent.ai.tools.base import Tool, ToolContext
from chatlog_agent.ai.tools.common import (
    as_int,
    format_time_range,
    parse_extended_time_params,
    t,
    time_param_properties,
)
from chatlog_agent.rag.pipeline import SemanticPipeline, SemanticPipelineOptions
from chatlog_agent.storage.models import TimeFilter


class SemanticSearchTool(Tool):
    """Wraps the semantic pipeline; reports "not enabled" when no embedding config is active."""

    def __init__(self, pipeline: SemanticPipeline):
        self._pipeline = pipeline

    @property
    def name(self) -> str:
        return "semantic_search_messages"

    @property
    def description(self) -> str:
        return (
            "Search past conversations by embedding similarity, matching meaning rather than keywords.\n\n"
            "Prefer search_messages; use this tool when:\n"
            '1. looking for "similar things said", e.g. "has anyone said something like \'I miss you\'"\n'
            "2. keyword search returned too few or irrelevant results\n"
            '3. analysing vague sentiment or relationships, e.g. "how does the other person feel about me"\n\n'
            "Not suitable for explicit keywords, a specific person's messages or a specific time period "
            "(use search_messages)."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Natural-language description of the content you are looking for",
                },
                "top_k": {"type": "number", "description": "Number of results, default 10 (5-20 recommended)"},
                "candidate_limit": {
                    "type": "number",
                    "description": "Number of candidate sessions, default 50 (larger is slower but may be more accurate)",
                },
                **time_param_properties(include_hour=False),
            },
            "required": ["query"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        locale = context.locale
        if not self._pipeline.is_enabled():
            return {"error": t("semantic_disabled", locale)}

        time_filter = parse_extended_time_params(params, context.time_filter)
        options = SemanticPipelineOptions(
            user_message=str(params.get("query") or ""),
            session_id=context.session_id,
            time_filter=time_filter,
            candidate_limit=as_int(params.get("candidate_limit")) or 50,
            top_k=as_int(params.get("top_k")) or 10,
        )
        result = await self._pipeline.execute(options)

        if not result.success:
            return {"error": result.error or t("semantic_failed", locale)}

        if not result.results:
            return {"message": t("semantic_no_results", locale), "rewrittenQuery": result.rewritten_query}

        return {
            "total": len(result.results),
            "rewrittenQuery": result.rewritten_query,
            "timeRange": format_time_range(time_filter, locale),
            "results": [
                {
                    "rank": rank,
                    "score": f"{r.score * 100:.1f}%",
                    "sessionId": r.metadata.chat_session_id,
                    "timeRange": format_time_range(
                        TimeFilter(start_ts=r.metadata.start_ts, end_ts=r.metadata.end_ts), locale
                    ),
                    "participants": r.metadata.participants,
                    "content": r.content,
                }
                for rank, r in enumerate(result.results, start=1)
            ],
        }
