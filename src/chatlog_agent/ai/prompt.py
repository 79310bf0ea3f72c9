"""System prompt assembly: editable role/rules around a locked, generated section."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from chatlog_agent.ai.tools.base import OwnerInfo
from chatlog_agent.core.types import ChatType


@dataclass
class PromptConfig:
    """User-editable parts of the system prompt; empty strings fall back to defaults."""

    role_definition: str = ""
    response_rules: str = ""


_ZH_WEEKDAYS = ["星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日"]

_TEXTS = {
    "zh-CN": {
        "current_date_is": "当前日期是",
        "chat_type_desc": {ChatType.PRIVATE: "私聊", ChatType.GROUP: "群聊"},
        "chat_context": {ChatType.PRIVATE: "对话", ChatType.GROUP: "群聊"},
        "owner_note": (
            "当前用户身份：\n"
            "- 用户在{context}中的身份是「{name}」（platformId: {platform_id}）\n"
            "- 当用户提到\"我\"、\"我的\"时，指的就是「{name}」\n"
            "- 查询\"我\"的发言时，使用 sender_id 参数筛选该成员\n"
        ),
        "member_note_private": (
            "成员查询策略：\n"
            "- 私聊只有两个人，可以直接获取成员列表\n"
            "- 当用户提到\"对方\"、\"他/她\"时，通过 get_group_members 获取另一方信息\n"
        ),
        "member_note_group": (
            "成员查询策略：\n"
            "- 当用户提到特定群成员（如\"张三说过什么\"、\"小明的发言\"等）时，应先调用 get_group_members 获取成员列表\n"
            "- 群成员有三种名称：accountName（原始昵称）、groupNickname（群昵称）、aliases（用户自定义别名）\n"
            "- 通过 get_group_members 的 search 参数可以模糊搜索这三种名称\n"
            "- 找到成员后，使用其 id 字段作为 search_messages 的 sender_id 参数来获取该成员的发言\n"
        ),
        "time_params_intro": "时间参数：按用户提到的精度组合 year/month/day/hour",
        "time_examples": [
            '"10月" → year: {year}, month: 10',
            '"10月1号" → year: {year}, month: 10, day: 1',
            '"10月1号下午3点" → year: {year}, month: 10, day: 1, hour: 15',
        ],
        "default_year_note": "未指定年份默认{year}年，若该月份未到则用{prev_year}年",
        "response_instruction": "根据用户的问题，选择合适的工具获取数据，然后基于数据给出回答。",
        "response_rules_title": "回答要求：",
        "fallback_role_definition": (
            "你是一个专业的{chat_type}记录分析助手。\n你的任务是帮助用户理解和分析他们的{chat_type}记录数据。"
        ),
        "fallback_response_rules": (
            "1. 基于工具返回的数据回答，不要编造信息\n"
            "2. 如果数据不足以回答问题，请说明\n"
            "3. 回答要简洁明了，使用 Markdown 格式"
        ),
        "round_limit_instruction": "请根据已获取的信息给出回答，不要再调用工具。",
        "empty_answer": "抱歉，未能根据已获取的信息生成回答。",
    },
    "en-US": {
        "current_date_is": "Current date is",
        "chat_type_desc": {ChatType.PRIVATE: "private chat", ChatType.GROUP: "group chat"},
        "chat_context": {ChatType.PRIVATE: "conversation", ChatType.GROUP: "group chat"},
        "owner_note": (
            "Current user identity:\n"
            '- The user\'s identity in this {context} is "{name}" (platformId: {platform_id})\n'
            '- When the user refers to "I" or "my", it refers to "{name}"\n'
            '- When querying "my" messages, use the sender_id parameter to filter for this member\n'
        ),
        "member_note_private": (
            "Member query strategy:\n"
            "- Private chats only have two participants, so the member list can be directly obtained\n"
            '- When the user refers to "the other party" or "he/she", get the other participant\'s '
            "information via get_group_members\n"
        ),
        "member_note_group": (
            "Member query strategy:\n"
            '- When the user refers to specific group members (e.g., "what did John say", "Mary\'s messages"), '
            "first call get_group_members to get the member list\n"
            "- Group members have three names: accountName (original nickname), groupNickname (group nickname), "
            "aliases (user-defined aliases)\n"
            "- The search parameter of get_group_members can be used for fuzzy searching these three names\n"
            "- Once a member is found, use their id field as the sender_id parameter for search_messages "
            "to retrieve their messages\n"
        ),
        "time_params_intro": "Time parameters: combine year/month/day/hour based on user mention",
        "time_examples": [
            '"October" → year: {year}, month: 10',
            '"October 1st" → year: {year}, month: 10, day: 1',
            '"October 1st 3 PM" → year: {year}, month: 10, day: 1, hour: 15',
        ],
        "default_year_note": (
            "If year is not specified, defaults to {year}. If the month has not yet occurred, {prev_year} is used."
        ),
        "response_instruction": (
            "Based on the user's question, select appropriate tools to retrieve data, "
            "then provide an answer based on the data."
        ),
        "response_rules_title": "Response requirements:",
        "fallback_role_definition": (
            "You are a professional {chat_type} analysis assistant.\n"
            "Your task is to help users understand and analyze their {chat_type} data."
        ),
        "fallback_response_rules": (
            "1. Answer based on data returned by tools, do not fabricate information\n"
            "2. If data is insufficient to answer, please state so\n"
            "3. Keep answers concise and clear, use Markdown format"
        ),
        "round_limit_instruction": (
            "Please answer based on the information already gathered. Do not call any more tools."
        ),
        "empty_answer": "Sorry, no answer could be produced from the information gathered.",
    },
}


def prompt_text(key: str, locale: str) -> str:
    """Prompt-level text for ``locale``; unknown locales use Chinese."""
    return _TEXTS.get(locale, _TEXTS["zh-CN"])[key]


def _format_current_date(today: date, locale: str) -> str:
    if locale == "en-US":
        return f"{today:%A, %B} {today.day}, {today.year}"
    return f"{today.year}年{today.month}月{today.day}日{_ZH_WEEKDAYS[today.weekday()]}"


def build_locked_section(
    chat_type: ChatType,
    owner_info: Optional[OwnerInfo] = None,
    locale: str = "zh-CN",
    today: Optional[date] = None,
) -> str:
    """The generated part of the prompt: date, owner identity, member and time conventions."""
    texts = _TEXTS.get(locale, _TEXTS["zh-CN"])
    today = today or date.today()
    chat_type = ChatType(chat_type)

    owner_note = ""
    if owner_info:
        owner_note = texts["owner_note"].format(
            context=texts["chat_context"][chat_type],
            name=owner_info.display_name,
            platform_id=owner_info.platform_id,
        )
    member_note = texts["member_note_private" if chat_type == ChatType.PRIVATE else "member_note_group"]

    year = today.year
    examples = "\n".join(f"- {ex.format(year=year)}" for ex in texts["time_examples"])

    return (
        f"{texts['current_date_is']} {_format_current_date(today, locale)}。\n"
        f"{owner_note}\n"
        f"{member_note}\n"
        f"{texts['time_params_intro']}\n"
        f"{examples}\n"
        f"{texts['default_year_note'].format(year=year, prev_year=year - 1)}\n\n"
        f"{texts['response_instruction']}"
    )


def build_system_prompt(
    chat_type: ChatType = ChatType.GROUP,
    prompt_config: Optional[PromptConfig] = None,
    owner_info: Optional[OwnerInfo] = None,
    locale: str = "zh-CN",
    today: Optional[date] = None,
) -> str:
    texts = _TEXTS.get(locale, _TEXTS["zh-CN"])
    chat_type = ChatType(chat_type)

    role_definition = (prompt_config.role_definition if prompt_config else "") or texts[
        "fallback_role_definition"
    ].format(chat_type=texts["chat_type_desc"][chat_type])
    response_rules = (prompt_config.response_rules if prompt_config else "") or texts["fallback_response_rules"]

    locked = build_locked_section(chat_type, owner_info, locale, today)
    return f"{role_definition}\n\n{locked}\n\n{texts['response_rules_title']}\n{response_rules}"
