from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

import numpy as np
import pytest

from chatlog_agent.ai.client import LLMClient
from chatlog_agent.ai.tools.registry import build_default_registry
from chatlog_agent.ai.types import ChatMessage, ChatOptions, ChatResponse, ChatStreamChunk
from chatlog_agent.rag.config import EmbeddingConfigManager
from chatlog_agent.rag.embedding import EmbeddingService, EmbeddingServiceProvider
from chatlog_agent.rag.pipeline import SemanticPipeline
from chatlog_agent.rag.vector_store import SQLiteVectorStore
from chatlog_agent.storage.message_repo import SQLiteMessageStore

CHAT_ID = "demo"
BASE_TS = int(datetime(2024, 3, 15, 10, 0).timestamp())


class ScriptedLLMClient(LLMClient):
    """Replays canned responses and records every request it receives."""

    def __init__(
        self,
        responses: list[ChatResponse] | None = None,
        streams: list[list[ChatStreamChunk]] | None = None,
    ):
        super().__init__("scripted-model")
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.requests: list[tuple[list[ChatMessage], ChatOptions]] = []

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        self.requests.append((list(messages), options))
        return self.responses.pop(0)

    async def chat_stream(self, messages: list[ChatMessage], options: ChatOptions) -> AsyncIterator[ChatStreamChunk]:
        self.requests.append((list(messages), options))
        for chunk in self.streams.pop(0):
            yield chunk


VOCABULARY = ["hiking", "morning", "snacks", "tonight"]


class KeywordEmbeddingService(EmbeddingService):
    """Bag-of-words vectors over a tiny vocabulary, plus a constant component."""

    model = "keyword-test"

    def __init__(self) -> None:
        self.embedded: list[str] = []

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        self.embedded.extend(texts)
        return [
            np.array([text.lower().count(word) for word in VOCABULARY] + [0.1], dtype=np.float32)
            for text in texts
        ]


@pytest.fixture
async def store(tmp_path):
    s = SQLiteMessageStore(tmp_path / "databases")
    alice = await s.add_member(CHAT_ID, "wxid_alice", account_name="Alice", aliases=["Ali"])
    bob = await s.add_member(CHAT_ID, "wxid_bob", account_name="Bob", group_nickname="Bobby")
    await s.add_name_history(CHAT_ID, bob, "group_nickname", "Bob the Builder", BASE_TS - 86400, BASE_TS - 3600)
    await s.add_name_history(CHAT_ID, bob, "group_nickname", "Bobby", BASE_TS - 3600)
    await s.add_messages(
        CHAT_ID,
        [
            (alice, "good morning everyone", BASE_TS),
            (bob, "morning! anyone up for hiking", BASE_TS + 60),
            (alice, "hiking sounds great", BASE_TS + 120),
            (bob, "see you tonight", BASE_TS + 7200),
            (alice, "bring snacks", BASE_TS + 7260),
        ],
    )
    await s.rebuild_chat_sessions(CHAT_ID)
    yield s
    await s.close()


@pytest.fixture
def embedding_manager(tmp_path) -> EmbeddingConfigManager:
    return EmbeddingConfigManager(tmp_path / "ai" / "embedding-config.json")


@pytest.fixture
async def vector_store(tmp_path):
    vs = SQLiteVectorStore(tmp_path / "ai" / "vectors.db", cache_size=100)
    await vs.initialize()
    yield vs
    await vs.close()


@pytest.fixture
def pipeline(store, embedding_manager, vector_store) -> SemanticPipeline:
    return SemanticPipeline(store, EmbeddingServiceProvider(embedding_manager), vector_store)


@pytest.fixture
def registry(store, pipeline):
    return build_default_registry(store, pipeline)
