from __future__ import annotations

from chatlog_agent.rag.chunking import (
    ChunkingOptions,
    ChunkingService,
    build_chunks,
    format_session_chunk,
    split_messages,
)
from chatlog_agent.storage.models import Message

from conftest import BASE_TS, CHAT_ID


def _messages(count: int, text: str = "message text") -> list[Message]:
    return [
        Message(id=i, sender_id=1 + i % 2, sender_name=f"user{1 + i % 2}", content=f"{text} {i}", timestamp=BASE_TS + i)
        for i in range(1, count + 1)
    ]


async def test_chunks_are_idempotent(store):
    service = ChunkingService(store)
    first = await service.get_session_chunks(CHAT_ID, [1, 2])
    second = await service.get_session_chunks(CHAT_ID, [1, 2])

    assert [c.id for c in first] == [c.id for c in second]
    assert [c.content for c in first] == [c.content for c in second]
    assert [c.metadata.chat_session_id for c in first] == [1, 2]
    assert first[0].metadata.participants == ["Alice", "Bobby"]
    assert first[0].metadata.message_count == 3
    assert first[1].metadata.start_ts == BASE_TS + 7200


async def test_whole_session_chunk(store):
    chunk = await ChunkingService(store, ChunkingOptions(max_chars=10)).get_session_chunk(CHAT_ID, 1)
    assert chunk.metadata.message_count == 3
    assert "hiking sounds great" in chunk.content

    assert await ChunkingService(store).get_session_chunk(CHAT_ID, 99) is None


def test_split_respects_max_chars_and_keeps_order():
    messages = _messages(20)
    groups = split_messages(messages, ChunkingOptions(max_chars=120))

    assert len(groups) > 1
    assert [m.id for group in groups for m in group] == [m.id for m in messages]
    for group in groups:
        if len(group) > 1:
            assert len(format_session_chunk(group).split("\n", 1)[1]) <= 120


def test_overlap_is_bounded_by_chunk_size():
    messages = _messages(12)
    groups = split_messages(messages, ChunkingOptions(max_chars=100, overlap_messages=50))

    starts = [group[0].id for group in groups]
    assert starts == sorted(set(starts))
    assert groups[-1][-1].id == 12


def test_overlap_repeats_previous_messages():
    messages = _messages(10)
    groups = split_messages(messages, ChunkingOptions(max_chars=150, overlap_messages=1))

    for previous, current in zip(groups, groups[1:]):
        assert current[0].id == previous[-1].id


def test_oversized_message_forms_its_own_chunk():
    messages = _messages(3)
    messages[1].content = "x" * 500
    groups = split_messages(messages, ChunkingOptions(max_chars=100))
    assert [[m.id for m in g] for g in groups] == [[1], [2], [3]]


def test_chunk_ids_depend_on_chat_and_content():
    messages = _messages(3)
    options = ChunkingOptions()
    a = build_chunks("chat-a", 1, messages, options)[0]
    b = build_chunks("chat-b", 1, messages, options)[0]
    c = build_chunks("chat-a", 1, messages[:2], options)[0]

    assert a.id != b.id
    assert a.id != c.id
    assert a.id == build_chunks("chat-a", 1, list(reversed(messages)), options)[0].id


def test_empty_messages_are_skipped():
    messages = _messages(2)
    messages[0].content = None
    chunks = build_chunks(CHAT_ID, 1, messages, ChunkingOptions())
    assert chunks[0].metadata.message_count == 1
    assert build_chunks(CHAT_ID, 1, [], ChunkingOptions()) == []
