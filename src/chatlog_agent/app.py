"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Optional

from chatlog_agent.ai.agent import Agent, AgentConfig
from chatlog_agent.ai.client import LLMClient, create_llm_client
from chatlog_agent.ai.prompt import PromptConfig
from chatlog_agent.ai.runs import AgentRunRegistry
from chatlog_agent.ai.tools.base import OwnerInfo, ToolContext
from chatlog_agent.ai.tools.registry import build_default_registry
from chatlog_agent.ai.types import AgentResult, AgentStreamChunk, ChatMessage
from chatlog_agent.config import AppConfig
from chatlog_agent.core.cancel import CancelToken
from chatlog_agent.core.types import ChatType
from chatlog_agent.log import bind_request, get_logger
from chatlog_agent.rag.chunking import ChunkingOptions, ChunkingService
from chatlog_agent.rag.config import EmbeddingConfigManager
from chatlog_agent.rag.embedding import EmbeddingServiceProvider, ServiceFactory
from chatlog_agent.rag.pipeline import SemanticPipeline
from chatlog_agent.rag.rerank import RerankService
from chatlog_agent.rag.vector_store import SQLiteVectorStore, VectorStoreStats
from chatlog_agent.storage.message_repo import SQLiteMessageStore
from chatlog_agent.storage.models import TimeFilter

logger = get_logger(__name__)


class ChatlogAgentApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        llm_client: Optional[LLMClient] = None,
        embedding_factory: Optional[ServiceFactory] = None,
    ):
        self.config = config
        self.store = SQLiteMessageStore(config.storage.db_dir)
        self.embedding_configs = EmbeddingConfigManager(config.storage.embedding_config_path)
        self.embeddings = EmbeddingServiceProvider(self.embedding_configs, config.llm, factory=embedding_factory)
        self.vector_store = SQLiteVectorStore(config.storage.vector_db_path, cache_size=config.rag.cache_size)
        self.llm_client = llm_client or create_llm_client(config.llm)
        self.pipeline = SemanticPipeline(
            self.store,
            self.embeddings,
            self.vector_store,
            chunking=ChunkingService(
                self.store,
                ChunkingOptions(
                    max_chars=config.rag.chunk_max_chars,
                    overlap_messages=config.rag.chunk_overlap_messages,
                ),
            ),
            llm_client=self.llm_client,
            rerank=RerankService(config.rag.rerank),
            rewrite_query=config.rag.rewrite_query,
        )
        self.tool_registry = build_default_registry(self.store, self.pipeline)
        self.runs = AgentRunRegistry()

    async def start(self) -> None:
        await self.vector_store.initialize()
        logger.info(
            "chatlog_agent_started",
            provider=self.config.llm.provider,
            model=self.llm_client.model,
            tools=len(self.tool_registry.all_tools()),
            semantic_enabled=self.embedding_configs.is_enabled(),
        )

    async def stop(self) -> None:
        for request_id in self.runs.active_ids:
            self.runs.abort(request_id)
        await self.store.close()
        await self.vector_store.close()
        await self.embeddings.close()
        logger.info("chatlog_agent_stopped")

    # ── Agent runs ──────────────────────────────────────────────────

    def _create_agent(
        self,
        session_id: str,
        cancel_token: CancelToken,
        history: Optional[list[ChatMessage]] = None,
        owner_info: Optional[OwnerInfo] = None,
        time_filter: Optional[TimeFilter] = None,
        locale: Optional[str] = None,
        chat_type: Optional[ChatType] = None,
    ) -> Agent:
        settings = self.config.agent
        context = ToolContext(
            session_id=session_id,
            owner_info=owner_info,
            time_filter=time_filter,
            max_messages_limit=settings.max_messages_limit,
        )
        return Agent(
            self.llm_client,
            self.tool_registry,
            context,
            config=AgentConfig(
                max_tool_rounds=settings.max_tool_rounds,
                temperature=self.config.llm.temperature,
                max_tokens=self.config.llm.max_tokens,
            ),
            history=history,
            chat_type=ChatType(chat_type or settings.chat_type),
            prompt_config=PromptConfig(
                role_definition=settings.role_definition,
                response_rules=settings.response_rules,
            ),
            locale=locale or settings.locale,
            cancel_token=cancel_token,
        )

    async def ask(
        self, session_id: str, question: str, request_id: Optional[str] = None, **options: Any
    ) -> AgentResult:
        """Answer one question about the chat ``session_id``; abortable by ``request_id``."""
        request_id, token = self.runs.start(request_id)
        try:
            with bind_request(request_id, session_id=session_id):
                agent = self._create_agent(session_id, token, **options)
                return await agent.execute(question)
        finally:
            self.runs.finish(request_id)

    async def ask_stream(
        self, session_id: str, question: str, request_id: Optional[str] = None, **options: Any
    ) -> AsyncIterator[AgentStreamChunk]:
        request_id, token = self.runs.start(request_id)
        try:
            with bind_request(request_id, session_id=session_id):
                agent = self._create_agent(session_id, token, **options)
                async for chunk in agent.stream(question):
                    yield chunk
        finally:
            self.runs.finish(request_id)

    def abort(self, request_id: str) -> bool:
        return self.runs.abort(request_id)

    # ── Vector store ────────────────────────────────────────────────

    async def vector_stats(self) -> VectorStoreStats:
        stats = await self.vector_store.stats()
        stats.enabled = self.embedding_configs.is_enabled()
        return stats

    async def clear_vectors(self) -> None:
        await self.vector_store.clear()
