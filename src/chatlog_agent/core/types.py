"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class ChatType(StrEnum):
    GROUP = "group"
    PRIVATE = "private"


class EmbeddingSource(StrEnum):
    API = "api"
    REUSE_LLM = "reuse_llm"


def is_chinese_locale(locale: str | None) -> bool:
    return locale == "zh-CN"
