"""Time distribution statistics tool."""

from __future__ import annotations

from typing import Any

from chatlog_agent.ai.tools.base import Tool, ToolContext
from chatlog_agent.ai.tools.common import daily_summary, t
from chatlog_agent.storage.base import MessageStore

DAILY_TREND_DAYS = 30


class TimeStatsTool(Tool):
    """Hourly, weekday or daily message distribution under the context's time filter."""

    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_time_stats"

    @property
    def description(self) -> str:
        return (
            "Get the time distribution of chat activity. Use for questions like "
            '"when is the group most active" or "what time do people usually chat".'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "description": "Statistic type: hourly (by hour), weekday (by day of week), daily (by date)",
                    "enum": ["hourly", "weekday", "daily"],
                },
            },
            "required": ["type"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        stat_type = params.get("type")
        suffix = t("msg_suffix", context.locale)

        if stat_type == "hourly":
            hours = await self._store.get_hourly_activity(context.session_id, context.time_filter)
            peak = max(hours, key=lambda h: h.message_count)
            return {
                "peakHour": f"{peak.hour}:00 ({peak.message_count}{suffix})",
                "distribution": [f"{h.hour}:00 {h.message_count}{suffix}" for h in hours],
            }

        if stat_type == "weekday":
            names = t("weekdays", context.locale)
            days = await self._store.get_weekday_activity(context.session_id, context.time_filter)
            peak = max(days, key=lambda d: d.message_count)
            return {
                "peakDay": f"{names[peak.weekday]} ({peak.message_count}{suffix})",
                "distribution": [f"{names[d.weekday]} {d.message_count}{suffix}" for d in days],
            }

        if stat_type == "daily":
            daily = await self._store.get_daily_activity(context.session_id, context.time_filter)
            recent = daily[-DAILY_TREND_DAYS:]
            total = sum(d.message_count for d in recent)
            avg = round(total / len(recent)) if recent else 0
            return {
                "summary": daily_summary(len(recent), total, avg, context.locale),
                "trend": [f"{d.date} {d.message_count}{suffix}" for d in recent],
            }

        raise ValueError(f"Unknown statistic type: {stat_type!r}")
