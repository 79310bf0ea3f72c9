"""Helpers shared by the tool executors: time filters, localisation, compact formatting."""

from __future__ import annotations

import calendar
import time
from datetime import datetime
from typing import Any, Optional, Union

from chatlog_agent.core.types import is_chinese_locale
from chatlog_agent.log import get_logger
from chatlog_agent.storage.models import Message, TimeFilter

logger = get_logger(__name__)

MAX_MESSAGE_CONTENT_LENGTH = 200

_TEXTS: dict[str, dict[str, Any]] = {
    "all_time": {"zh": "全部时间", "en": "All time"},
    "no_content": {"zh": "[无内容]", "en": "[No content]"},
    "member_not_found": {"zh": "未找到该成员", "en": "Member not found"},
    "until_now": {"zh": "至今", "en": "Present"},
    "no_change_record": {"zh": "无变更记录", "en": "No change record"},
    "no_conversation": {"zh": "未找到这两人之间的对话", "en": "No conversation found between these two members"},
    "no_message_context": {"zh": "未找到指定的消息或上下文", "en": "Message or context not found"},
    "no_sessions": {"zh": "未找到匹配的会话", "en": "No matching sessions found"},
    "session_not_found": {"zh": "未找到指定的会话", "en": "Session not found"},
    "no_summaries": {
        "zh": "未找到带摘要的会话。可能还没有生成摘要。",
        "en": "No sessions with summaries found. Summaries may not have been generated yet.",
    },
    "semantic_disabled": {
        "zh": "语义搜索未启用。请在设置中添加并启用 Embedding 配置。",
        "en": "Semantic search is not enabled. Please add and enable an Embedding config in settings.",
    },
    "semantic_failed": {"zh": "语义搜索失败", "en": "Semantic search failed"},
    "semantic_no_results": {"zh": "未找到相关的历史对话", "en": "No relevant conversations found"},
    "msg_suffix": {"zh": "条", "en": ""},
    "session_msg_suffix": {"zh": "条消息", "en": " messages"},
    "complete": {"zh": "完整会话", "en": "complete"},
    "alias": {"zh": "别名", "en": "Alias"},
    "error_prefix": {"zh": "错误", "en": "Error"},
    "weekdays": {
        "zh": ["", "周一", "周二", "周三", "周四", "周五", "周六", "周日"],
        "en": ["", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"],
    },
}


def t(key: str, locale: Optional[str]) -> Any:
    """Look up a localised tool text; ``zh-CN`` gets Chinese, everything else English."""
    entry = _TEXTS[key]
    return entry["zh"] if is_chinese_locale(locale) else entry["en"]


def daily_summary(days: int, total: int, avg: int, locale: Optional[str]) -> str:
    if is_chinese_locale(locale):
        return f"最近{days}天共{total}条，日均{avg}条"
    return f"Last {days} days: {total} messages, avg {avg}/day"


# ── Schema fragments ───────────────────────────────────────────────────

YEAR_PARAM = {"type": "number", "description": "Filter by year, e.g. 2024"}
MONTH_PARAM = {"type": "number", "description": "Filter by month (1-12), used together with year"}
DAY_PARAM = {"type": "number", "description": "Filter by day of month (1-31), used together with year and month"}
HOUR_PARAM = {"type": "number", "description": "Filter by hour (0-23), used together with year, month and day"}
START_TIME_PARAM = {
    "type": "string",
    "description": 'Start time, format "YYYY-MM-DD HH:mm", e.g. "2024-03-15 14:00". Overrides year/month/day/hour',
}
END_TIME_PARAM = {
    "type": "string",
    "description": 'End time, format "YYYY-MM-DD HH:mm", e.g. "2024-03-15 18:30". Overrides year/month/day/hour',
}


def time_param_properties(include_hour: bool = True) -> dict[str, Any]:
    props: dict[str, Any] = {"year": YEAR_PARAM, "month": MONTH_PARAM, "day": DAY_PARAM}
    if include_hour:
        props["hour"] = HOUR_PARAM
    props["start_time"] = START_TIME_PARAM
    props["end_time"] = END_TIME_PARAM
    return props


# ── Parameter coercion ─────────────────────────────────────────────────


def as_int(value: Any) -> Optional[int]:
    """Coerce a model-supplied number (possibly a string or float) to int."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    return []


def effective_limit(params: dict[str, Any], context_limit: Optional[int], default: int) -> int:
    """User-configured limit beats the model's, which beats the tool default. Never below 1."""
    return max(context_limit or as_int(params.get("limit")) or default, 1)


# ── Time filters ───────────────────────────────────────────────────────


def _parse_local_datetime(value: Any) -> Optional[int]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return int(datetime.fromisoformat(value.strip().replace(" ", "T")).timestamp())
    except ValueError:
        return None


def _calendar_range(year: int, month: Optional[int], day: Optional[int], hour: Optional[int]) -> TimeFilter:
    if month and day and hour is not None:
        start = datetime(year, month, day, hour, 0, 0)
        end = datetime(year, month, day, hour, 59, 59)
    elif month and day:
        start = datetime(year, month, day, 0, 0, 0)
        end = datetime(year, month, day, 23, 59, 59)
    elif month:
        last_day = calendar.monthrange(year, month)[1]
        start = datetime(year, month, 1)
        end = datetime(year, month, last_day, 23, 59, 59)
    else:
        start = datetime(year, 1, 1)
        end = datetime(year, 12, 31, 23, 59, 59)
    return TimeFilter(start_ts=int(start.timestamp()), end_ts=int(end.timestamp()))


def parse_extended_time_params(
    params: dict[str, Any], context_time_filter: Optional[TimeFilter] = None
) -> Optional[TimeFilter]:
    """Resolve the effective time filter for a tool call.

    Precedence: ``start_time``/``end_time`` > ``year``/``month``/``day``/``hour``
    > the context's default filter > no filter. A missing bound of an explicit
    range defaults to the epoch (start) or now (end).
    """
    start_ts = _parse_local_datetime(params.get("start_time"))
    end_ts = _parse_local_datetime(params.get("end_time"))
    if start_ts is not None or end_ts is not None:
        return TimeFilter(
            start_ts=start_ts if start_ts is not None else 0,
            end_ts=end_ts if end_ts is not None else int(time.time()),
        )

    year = as_int(params.get("year"))
    if year:
        try:
            return _calendar_range(
                year,
                as_int(params.get("month")),
                as_int(params.get("day")),
                as_int(params.get("hour")),
            )
        except ValueError as e:
            logger.warning("invalid_time_params", params=params, error=str(e))

    return context_time_filter


# ── Formatting ─────────────────────────────────────────────────────────


def format_timestamp(ts: int, locale: Optional[str]) -> str:
    dt = datetime.fromtimestamp(ts)
    if is_chinese_locale(locale):
        return f"{dt.year}/{dt.month}/{dt.day} {dt:%H:%M:%S}"
    return f"{dt:%Y-%m-%d %H:%M:%S}"


def format_date(ts: int, locale: Optional[str]) -> str:
    dt = datetime.fromtimestamp(ts)
    if is_chinese_locale(locale):
        return f"{dt.year}/{dt.month}/{dt.day}"
    return f"{dt:%Y-%m-%d}"


def format_time_range(time_filter: Optional[TimeFilter], locale: Optional[str]) -> Union[str, dict[str, str]]:
    if time_filter is None:
        return t("all_time", locale)
    return {
        "start": format_timestamp(time_filter.start_ts, locale),
        "end": format_timestamp(time_filter.end_ts, locale),
    }


def format_message_compact(message: Message, locale: Optional[str]) -> str:
    """One line per message: ``"#42 2025/3/3 07:25:04 Alice: content"``, long content truncated.

    The leading id lets the model pass messages on to get_message_context.
    """
    content = message.content or t("no_content", locale)
    if len(content) > MAX_MESSAGE_CONTENT_LENGTH:
        content = content[:MAX_MESSAGE_CONTENT_LENGTH] + "..."
    return f"#{message.id} {format_timestamp(message.timestamp, locale)} {message.sender_name}: {content}"
