from __future__ import annotations

from datetime import date

from chatlog_agent.ai.prompt import PromptConfig, build_system_prompt, prompt_text
from chatlog_agent.ai.tools.base import OwnerInfo
from chatlog_agent.core.types import ChatType


def test_custom_role_and_rules_surround_locked_section():
    prompt = build_system_prompt(
        ChatType.GROUP,
        PromptConfig(role_definition="You are a gossip analyst.", response_rules="Answer in one line."),
        OwnerInfo(display_name="Alice", platform_id="wxid_alice"),
        locale="en-US",
        today=date(2025, 1, 6),
    )
    assert prompt.startswith("You are a gossip analyst.")
    assert prompt.rstrip().endswith("Answer in one line.")
    assert "Monday, January 6, 2025" in prompt
    assert "Alice" in prompt and "wxid_alice" in prompt


def test_fallbacks_and_unknown_locale_use_chinese():
    prompt = build_system_prompt(ChatType.PRIVATE, None, None, locale="fr-FR", today=date(2025, 1, 6))
    assert "2025年1月6日" in prompt
    assert prompt_text("round_limit_instruction", "fr-FR") == "请根据已获取的信息给出回答，不要再调用工具。"


def test_owner_section_only_when_known():
    without_owner = build_system_prompt(ChatType.GROUP, None, None, locale="en-US", today=date(2025, 1, 6))
    assert "wxid_" not in without_owner
