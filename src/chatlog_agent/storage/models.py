"""Data models for the message store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class TimeFilter:
    """Inclusive unix-second range."""

    start_ts: int
    end_ts: int


@dataclass
class Message:
    id: int
    sender_id: int
    sender_name: str
    content: Optional[str]
    timestamp: int
    chat_session_id: Optional[int] = None


@dataclass
class MessageSearchResult:
    total: int
    messages: list[Message] = field(default_factory=list)


@dataclass
class Member:
    id: int
    platform_id: str
    account_name: Optional[str] = None
    group_nickname: Optional[str] = None
    aliases: list[str] = field(default_factory=list)
    message_count: int = 0

    @property
    def display_name(self) -> str:
        return self.group_nickname or self.account_name or self.platform_id


@dataclass
class MemberActivity:
    member_id: int
    name: str
    message_count: int
    percentage: float


@dataclass
class HourlyActivity:
    hour: int
    message_count: int


@dataclass
class WeekdayActivity:
    weekday: int  # 1 = Monday ... 7 = Sunday
    message_count: int


@dataclass
class DailyActivity:
    date: str  # YYYY-MM-DD, local time
    message_count: int


@dataclass
class NameHistoryEntry:
    name_type: str  # "account_name" | "group_nickname"
    name: str
    start_ts: int
    end_ts: Optional[int] = None


@dataclass
class ConversationResult:
    total: int
    messages: list[Message]
    member1_name: str
    member2_name: str


@dataclass
class ChatSessionInfo:
    """A time-gap segment of the chat (a "conversation session")."""

    id: int
    start_ts: int
    end_ts: int
    message_count: int
    summary: Optional[str] = None
    participants: list[str] = field(default_factory=list)


@dataclass
class ChatSessionSearchResult:
    id: int
    start_ts: int
    end_ts: int
    message_count: int
    is_complete: bool
    preview_messages: list[Message] = field(default_factory=list)


@dataclass
class SessionMessagesResult:
    session_id: int
    start_ts: int
    end_ts: int
    message_count: int
    returned_count: int
    participants: list[str]
    messages: list[Message]
