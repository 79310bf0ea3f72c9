"""Session-level chunking of chat messages for embedding.

A chat session (time-gap segment) becomes one or more chunks. Splitting is
a pure function of the time-ordered messages, so unchanged sessions always
produce the same boundaries and the same content-hash ids.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from chatlog_agent.log import get_logger
from chatlog_agent.storage.base import MessageStore
from chatlog_agent.storage.models import Message

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkingOptions:
    max_chars: int = 1500
    # Messages repeated from the end of the previous chunk; capped below the chunk's own size.
    overlap_messages: int = 0


@dataclass
class ChunkMetadata:
    session_id: str
    chat_session_id: int
    start_ts: int
    end_ts: int
    participants: list[str] = field(default_factory=list)
    message_count: int = 0


@dataclass
class Chunk:
    id: str
    content: str
    metadata: ChunkMetadata


def _format_time(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def format_message_line(message: Message) -> str:
    return f"{_format_time(message.timestamp)} {message.sender_name}: {message.content}"


def participants_of(messages: list[Message]) -> list[str]:
    """Sender names in order of first appearance."""
    seen: dict[str, None] = {}
    for m in messages:
        seen.setdefault(m.sender_name, None)
    return list(seen)


def format_session_chunk(messages: list[Message]) -> str:
    """Render messages as the text that gets embedded: a header line, then one line per message."""
    if not messages:
        return ""
    header = (
        f"[{_format_time(messages[0].timestamp)} ~ {_format_time(messages[-1].timestamp)}] "
        f"{', '.join(participants_of(messages))}"
    )
    return "\n".join([header, *(format_message_line(m) for m in messages)])


def split_messages(messages: list[Message], options: ChunkingOptions) -> list[list[Message]]:
    """Split time-ordered messages into groups whose rendered lines fit ``max_chars``.

    A single message longer than ``max_chars`` forms its own group.
    """
    if not messages:
        return []

    line_lengths = [len(format_message_line(m)) for m in messages]
    groups: list[list[Message]] = []
    start = 0
    while start < len(messages):
        end = start
        size = 0
        while end < len(messages):
            added = line_lengths[end] + (1 if end > start else 0)
            if end > start and size + added > options.max_chars:
                break
            size += added
            end += 1
        groups.append(messages[start:end])
        if end >= len(messages):
            break
        overlap = max(0, min(options.overlap_messages, end - start - 1))
        start = end - overlap
    return groups


def chunk_id(session_id: str, chat_session_id: int, content: str) -> str:
    digest = hashlib.sha256(f"{session_id}\x00{chat_session_id}\x00{content}".encode("utf-8"))
    return digest.hexdigest()[:32]


def build_chunks(
    session_id: str, chat_session_id: int, messages: list[Message], options: ChunkingOptions
) -> list[Chunk]:
    ordered = sorted((m for m in messages if m.content), key=lambda m: (m.timestamp, m.id))
    chunks = []
    for group in split_messages(ordered, options):
        content = format_session_chunk(group)
        chunks.append(
            Chunk(
                id=chunk_id(session_id, chat_session_id, content),
                content=content,
                metadata=ChunkMetadata(
                    session_id=session_id,
                    chat_session_id=chat_session_id,
                    start_ts=group[0].timestamp,
                    end_ts=group[-1].timestamp,
                    participants=participants_of(group),
                    message_count=len(group),
                ),
            )
        )
    return chunks


class ChunkingService:
    """Loads chat-session messages from the store and chunks them."""

    def __init__(self, store: MessageStore, options: Optional[ChunkingOptions] = None):
        self._store = store
        self._options = options or ChunkingOptions()

    async def get_session_chunks(
        self,
        session_id: str,
        chat_session_ids: list[int],
        options: Optional[ChunkingOptions] = None,
    ) -> list[Chunk]:
        options = options or self._options
        chunks: list[Chunk] = []
        for chat_session_id in chat_session_ids:
            messages = await self._store.get_chat_session_messages(session_id, chat_session_id)
            chunks.extend(build_chunks(session_id, chat_session_id, messages, options))
        logger.debug("session_chunks_built", session_id=session_id, sessions=len(chat_session_ids), chunks=len(chunks))
        return chunks

    async def get_session_chunk(self, session_id: str, chat_session_id: int) -> Optional[Chunk]:
        """The whole chat session as a single, unsplit chunk."""
        messages = await self._store.get_chat_session_messages(session_id, chat_session_id)
        unsplit = ChunkingOptions(max_chars=sum(len(format_message_line(m)) + 1 for m in messages) or 1)
        chunks = build_chunks(session_id, chat_session_id, messages, unsplit)
        return chunks[0] if chunks else None
