"""Semantic search pipeline: query -> candidate sessions -> chunks -> vectors -> ranked results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Optional

import numpy as np

from chatlog_agent.ai.client import LLMClient
from chatlog_agent.ai.tagging import strip_thinking
from chatlog_agent.ai.types import ChatMessage, ChatOptions
from chatlog_agent.errors import EmbeddingConfigError
from chatlog_agent.log import get_logger
from chatlog_agent.rag.chunking import Chunk, ChunkingService, ChunkMetadata
from chatlog_agent.rag.embedding import EmbeddingServiceProvider
from chatlog_agent.rag.rerank import RerankService
from chatlog_agent.rag.vector_store import SQLiteVectorStore, cosine_similarity
from chatlog_agent.storage.base import MessageStore
from chatlog_agent.storage.models import TimeFilter

logger = get_logger(__name__)

MAX_RESULT_CONTENT_LENGTH = 500
NOT_ENABLED_ERROR = "Semantic search is not enabled. Add and activate an embedding configuration first."

REWRITE_PROMPT = (
    "Rewrite the user's question into a short search query that describes the chat content to find. "
    "Keep names, places and key phrases. Reply with the query only, in the question's language."
)


@dataclass
class SemanticPipelineOptions:
    user_message: str
    session_id: str
    time_filter: Optional[TimeFilter] = None
    candidate_limit: int = 50
    top_k: int = 10


@dataclass
class SemanticSearchResult:
    chunk_id: str
    score: float
    content: str
    metadata: ChunkMetadata


@dataclass
class SemanticPipelineResult:
    success: bool
    results: list[SemanticSearchResult] = field(default_factory=list)
    rewritten_query: Optional[str] = None
    error: Optional[str] = None


def _cap(content: str) -> str:
    if len(content) > MAX_RESULT_CONTENT_LENGTH:
        return content[:MAX_RESULT_CONTENT_LENGTH] + "..."
    return content


class SemanticPipeline:
    """Runs one semantic search. :meth:`execute` reports failures in the result and never raises."""

    def __init__(
        self,
        store: MessageStore,
        embeddings: EmbeddingServiceProvider,
        vector_store: SQLiteVectorStore,
        chunking: Optional[ChunkingService] = None,
        llm_client: Optional[LLMClient] = None,
        rerank: Optional[RerankService] = None,
        rewrite_query: bool = False,
    ):
        self._store = store
        self._embeddings = embeddings
        self._vector_store = vector_store
        self._chunking = chunking or ChunkingService(store)
        self._llm_client = llm_client
        self._rerank = rerank
        self._rewrite_query = rewrite_query

    def is_enabled(self) -> bool:
        return self._embeddings.is_enabled()

    async def _rewrite(self, user_message: str) -> Optional[str]:
        if not (self._rewrite_query and self._llm_client):
            return None
        try:
            response = await self._llm_client.chat(
                [ChatMessage(role="system", content=REWRITE_PROMPT), ChatMessage(role="user", content=user_message)],
                ChatOptions(temperature=0.0, max_tokens=200),
            )
        except Exception as e:
            logger.warning("query_rewrite_failed", error=str(e))
            return None
        rewritten = strip_thinking(response.content).strip()
        logger.debug("query_rewritten", original=user_message, rewritten=rewritten)
        return rewritten or None

    async def _chunk_vectors(self, service, chunks: list[Chunk]) -> dict[str, np.ndarray]:
        """Stored vectors for ``chunks``, embedding and storing the ones not seen before."""
        vectors = await self._vector_store.get([c.id for c in chunks])
        missing = [c for c in chunks if c.id not in vectors]
        if missing:
            embedded = await service.embed_batch([c.content for c in missing])
            await self._vector_store.upsert(
                [(c.id, vector, asdict(c.metadata)) for c, vector in zip(missing, embedded)]
            )
            vectors.update({c.id: vector for c, vector in zip(missing, embedded)})
        logger.debug("chunk_vectors_ready", total=len(chunks), embedded=len(missing))
        return vectors

    async def _apply_rerank(
        self, query: str, scored: list[tuple[Chunk, float]]
    ) -> list[tuple[Chunk, float]]:
        if not (self._rerank and self._rerank.enabled) or not scored:
            return scored
        candidates = scored[: self._rerank.top_n]
        try:
            ranked = await self._rerank.rerank(query, [c.content for c, _ in candidates])
        except Exception as e:
            logger.warning("rerank_failed", error=str(e))
            return scored
        return [(candidates[index][0], score) for index, score in ranked]

    async def execute(self, options: SemanticPipelineOptions) -> SemanticPipelineResult:
        if not self.is_enabled():
            return SemanticPipelineResult(success=False, error=NOT_ENABLED_ERROR)

        try:
            service = self._embeddings.get()
        except EmbeddingConfigError as e:
            logger.warning("embedding_config_invalid", error=str(e))
            return SemanticPipelineResult(success=False, error=f"{NOT_ENABLED_ERROR} ({e})")
        if service is None:
            return SemanticPipelineResult(success=False, error=NOT_ENABLED_ERROR)

        try:
            rewritten = await self._rewrite(options.user_message)
            query = rewritten or options.user_message
            query_vector = await service.embed(query)

            sessions = await self._store.list_chat_sessions(
                options.session_id, options.time_filter, options.candidate_limit
            )
            if not sessions:
                return SemanticPipelineResult(success=True, rewritten_query=rewritten)

            chunks = await self._chunking.get_session_chunks(options.session_id, [s.id for s in sessions])
            vectors = await self._chunk_vectors(service, chunks)

            scored = [
                (chunk, cosine_similarity(query_vector, vectors[chunk.id]))
                for chunk in chunks
                if vectors[chunk.id].shape == query_vector.shape
            ]
            scored.sort(key=lambda pair: pair[1], reverse=True)
            scored = await self._apply_rerank(query, scored)
        except Exception as e:
            logger.error("semantic_pipeline_failed", error=str(e), exc_info=True)
            return SemanticPipelineResult(success=False, rewritten_query=None, error=str(e))

        results = [
            SemanticSearchResult(chunk_id=chunk.id, score=score, content=_cap(chunk.content), metadata=chunk.metadata)
            for chunk, score in scored[: options.top_k]
        ]
        logger.info(
            "semantic_search_done",
            sessions=len(sessions),
            chunks=len(chunks),
            results=len(results),
        )
        return SemanticPipelineResult(success=True, results=results, rewritten_query=rewritten)
