"""Abstract message-store interface consumed by the tools and the RAG pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from chatlog_agent.storage.models import (
    ChatSessionInfo,
    ChatSessionSearchResult,
    ConversationResult,
    DailyActivity,
    HourlyActivity,
    Member,
    MemberActivity,
    Message,
    MessageSearchResult,
    NameHistoryEntry,
    SessionMessagesResult,
    TimeFilter,
    WeekdayActivity,
)


class MessageStore(ABC):
    """Read API over one or more imported chats, addressed by ``session_id``."""

    @abstractmethod
    async def search_messages(
        self,
        session_id: str,
        keywords: list[str],
        time_filter: Optional[TimeFilter] = None,
        limit: int = 100,
        offset: int = 0,
        sender_id: Optional[int] = None,
    ) -> MessageSearchResult: ...

    @abstractmethod
    async def get_recent_messages(
        self, session_id: str, time_filter: Optional[TimeFilter] = None, limit: int = 100
    ) -> MessageSearchResult: ...

    @abstractmethod
    async def get_member_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[MemberActivity]: ...

    @abstractmethod
    async def get_hourly_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[HourlyActivity]: ...

    @abstractmethod
    async def get_weekday_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[WeekdayActivity]: ...

    @abstractmethod
    async def get_daily_activity(
        self, session_id: str, time_filter: Optional[TimeFilter] = None
    ) -> list[DailyActivity]: ...

    @abstractmethod
    async def get_members(self, session_id: str) -> list[Member]: ...

    @abstractmethod
    async def get_member_name_history(self, session_id: str, member_id: int) -> list[NameHistoryEntry]: ...

    @abstractmethod
    async def get_conversation_between(
        self,
        session_id: str,
        member_id_1: int,
        member_id_2: int,
        time_filter: Optional[TimeFilter] = None,
        limit: int = 100,
    ) -> ConversationResult: ...

    @abstractmethod
    async def get_message_context(
        self, session_id: str, message_ids: list[int], context_size: int = 20
    ) -> list[Message]: ...

    @abstractmethod
    async def search_sessions(
        self,
        session_id: str,
        keywords: Optional[list[str]] = None,
        time_filter: Optional[TimeFilter] = None,
        limit: int = 20,
        preview_count: int = 5,
    ) -> list[ChatSessionSearchResult]: ...

    @abstractmethod
    async def get_session_messages(
        self, session_id: str, chat_session_id: int, limit: int = 500
    ) -> Optional[SessionMessagesResult]: ...

    @abstractmethod
    async def get_session_summaries(
        self, session_id: str, limit: int = 20, time_filter: Optional[TimeFilter] = None
    ) -> list[ChatSessionInfo]: ...

    @abstractmethod
    async def list_chat_sessions(
        self, session_id: str, time_filter: Optional[TimeFilter] = None, limit: int = 50
    ) -> list[ChatSessionInfo]: ...

    @abstractmethod
    async def get_chat_session_messages(self, session_id: str, chat_session_id: int) -> list[Message]: ...
