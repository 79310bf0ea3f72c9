"""Member tools: activity ranking, member directory, nickname history."""

from __future__ import annotations

from typing import Any

from chatlog_agent.ai.tools.base import Tool, ToolContext
from chatlog_agent.ai.tools.common import as_int, format_date, t
from chatlog_agent.storage.base import MessageStore
from chatlog_agent.storage.models import Member, NameHistoryEntry


def _member_line(member: Member, locale: str, with_count: bool = True) -> str:
    """``id|platform_id|display name|count|Alias:a,b``"""
    parts = [str(member.id), member.platform_id, member.display_name]
    if with_count:
        parts.append(f"{member.message_count}{t('msg_suffix', locale)}")
    line = "|".join(parts)
    if member.aliases:
        line += f"|{t('alias', locale)}:{','.join(member.aliases)}"
    return line


class MemberStatsTool(Tool):
    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_member_stats"

    @property
    def description(self) -> str:
        return (
            "Get member activity statistics. Use for questions like "
            '"who talks the most" or "who is the most active member".'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "top_n": {"type": "number", "description": "Return the top N members, default 10"},
            },
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        top_n = as_int(params.get("top_n")) or 10
        activity = await self._store.get_member_activity(context.session_id, context.time_filter)

        suffix = t("msg_suffix", context.locale)
        return {
            "totalMembers": len(activity),
            "topMembers": [
                f"{rank}. {m.name} {m.message_count}{suffix}({m.percentage}%)"
                for rank, m in enumerate(activity[:top_n], start=1)
            ],
        }


class GroupMembersTool(Tool):
    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_group_members"

    @property
    def description(self) -> str:
        return (
            "List chat members with their ids, aliases and message counts. Use for questions like "
            '"who is in the group", "what is X\'s alias" or to look up a member id for other tools.'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "search": {
                    "type": "string",
                    "description": "Optional keyword matched against nickname, account name, aliases and platform id",
                },
                "limit": {"type": "number", "description": "Maximum number of members to return, default all"},
            },
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        members = await self._store.get_members(context.session_id)

        filtered = members
        search = params.get("search")
        if isinstance(search, str) and search:
            keyword = search.lower()
            filtered = [m for m in members if _member_matches(m, keyword)]

        limit = as_int(params.get("limit"))
        if limit and limit > 0:
            filtered = filtered[:limit]

        return {
            "totalMembers": len(members),
            "returnedMembers": len(filtered),
            "members": [_member_line(m, context.locale) for m in filtered],
        }


def _member_matches(member: Member, keyword: str) -> bool:
    if member.group_nickname and keyword in member.group_nickname.lower():
        return True
    if member.account_name and keyword in member.account_name.lower():
        return True
    if keyword in member.platform_id:
        return True
    return any(keyword in alias.lower() for alias in member.aliases)


class MemberNameHistoryTool(Tool):
    def __init__(self, store: MessageStore):
        self._store = store

    @property
    def name(self) -> str:
        return "get_member_name_history"

    @property
    def description(self) -> str:
        return (
            "Get a member's nickname change history. Use for questions like "
            '"what was X called before". Look up the member id with get_group_members first.'
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "member_id": {
                    "type": "number",
                    "description": "Database id of the member, obtained from get_group_members",
                },
            },
            "required": ["member_id"],
        }

    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        member_id = as_int(params.get("member_id"))
        members = await self._store.get_members(context.session_id)
        member = next((m for m in members if m.id == member_id), None)
        if member is None:
            return {"error": t("member_not_found", context.locale), "member_id": params.get("member_id")}

        history = await self._store.get_member_name_history(context.session_id, member.id)
        locale = context.locale

        def fmt(entry: NameHistoryEntry) -> str:
            end = format_date(entry.end_ts, locale) if entry.end_ts else t("until_now", locale)
            return f"{entry.name} ({format_date(entry.start_ts, locale)} ~ {end})"

        account_names = [fmt(h) for h in history if h.name_type == "account_name"]
        nicknames = [fmt(h) for h in history if h.name_type == "group_nickname"]
        no_change = t("no_change_record", locale)

        return {
            "member": _member_line(member, locale, with_count=False),
            "accountNameHistory": account_names or no_change,
            "groupNicknameHistory": nicknames or no_change,
        }
