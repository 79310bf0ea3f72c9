"""Embedding services built from the active embedding configuration."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Optional

import numpy as np

from chatlog_agent.config import LLMConfig
from chatlog_agent.core.types import EmbeddingSource
from chatlog_agent.errors import EmbeddingConfigError
from chatlog_agent.log import get_logger
from chatlog_agent.rag.config import ConfigResult, EmbeddingConfigManager, EmbeddingServiceConfig

logger = get_logger(__name__)

EMBED_BATCH_SIZE = 64


class EmbeddingService(ABC):
    """Turns text into float32 vectors."""

    model: str = ""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]: ...

    async def embed(self, text: str) -> np.ndarray:
        return (await self.embed_batch([text]))[0]

    async def close(self) -> None:
        return None


class OpenAIEmbeddingService(EmbeddingService):
    """``/embeddings`` endpoint of OpenAI or any compatible server."""

    def __init__(self, model: str, api_key: str = "", base_url: Optional[str] = None, dimensions: Optional[int] = None):
        import openai

        self.model = model
        self._dimensions = dimensions
        self._client = openai.AsyncOpenAI(api_key=api_key or "not-needed", base_url=base_url or None)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        if not texts:
            return []

        vectors: list[np.ndarray] = []
        for start in range(0, len(texts), EMBED_BATCH_SIZE):
            batch = texts[start:start + EMBED_BATCH_SIZE]
            kwargs = {"model": self.model, "input": batch}
            if self._dimensions:
                kwargs["dimensions"] = self._dimensions
            response = await self._client.embeddings.create(**kwargs)
            for item in sorted(response.data, key=lambda d: d.index):
                vectors.append(np.asarray(item.embedding, dtype=np.float32))

        logger.debug("embedding_batch_done", model=self.model, count=len(vectors))
        return vectors

    async def close(self) -> None:
        await self._client.close()


def build_embedding_service(config: EmbeddingServiceConfig, llm_config: Optional[LLMConfig] = None) -> EmbeddingService:
    """Resolve credentials (own or reused from the chat LLM) and create the service."""
    api_key, base_url = config.api_key, config.base_url
    if config.source == EmbeddingSource.REUSE_LLM:
        if llm_config is None or llm_config.provider != "openai":
            raise EmbeddingConfigError("Reusing LLM credentials requires an OpenAI-compatible chat provider")
        api_key, base_url = llm_config.api_key, llm_config.base_url
    return OpenAIEmbeddingService(config.model, api_key=api_key, base_url=base_url, dimensions=config.dimensions)


async def validate_embedding_config(
    config: EmbeddingServiceConfig, llm_config: Optional[LLMConfig] = None
) -> ConfigResult:
    """Embed a probe string with ``config`` to check that it works."""
    try:
        service = build_embedding_service(config, llm_config)
    except EmbeddingConfigError as e:
        return ConfigResult(success=False, config=config, error=str(e))
    try:
        vector = await service.embed("test")
    except Exception as e:
        logger.warning("embedding_config_invalid", name=config.name, error=str(e))
        return ConfigResult(success=False, config=config, error=str(e))
    finally:
        await service.close()
    logger.info("embedding_config_valid", name=config.name, dimensions=int(vector.shape[0]))
    return ConfigResult(success=True, config=config)


ServiceFactory = Callable[[EmbeddingServiceConfig], EmbeddingService]


class EmbeddingServiceProvider:
    """Caches the service for the active config; :meth:`reset` drops it."""

    def __init__(
        self,
        manager: EmbeddingConfigManager,
        llm_config: Optional[LLMConfig] = None,
        factory: Optional[ServiceFactory] = None,
    ):
        self._manager = manager
        self._llm_config = llm_config
        self._factory = factory or (lambda cfg: build_embedding_service(cfg, self._llm_config))
        self._service: Optional[EmbeddingService] = None
        self._config_key: Optional[tuple[str, int]] = None
        self._retired: list[EmbeddingService] = []
        self._closing: set[asyncio.Task] = set()
        manager.add_invalidation_hook(self.reset)

    def is_enabled(self) -> bool:
        return self._manager.is_enabled()

    def get(self) -> Optional[EmbeddingService]:
        """The service for the active config, or ``None`` when semantic search is disabled."""
        config = self._manager.get_active()
        if config is None:
            self.reset()
            return None

        key = (config.id, config.updated_at)
        if self._service is None or self._config_key != key:
            self.reset()
            self._service = self._factory(config)
            self._config_key = key
            logger.info("embedding_service_created", name=config.name, model=config.model)
        return self._service

    def reset(self) -> None:
        """Drop the cached service; its client is closed in the background."""
        if self._service is not None:
            logger.info("embedding_service_reset")
            self._retired.append(self._service)
            self._schedule_close()
        self._service = None
        self._config_key = None

    def _schedule_close(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; close() picks the retired services up.
            return
        task = loop.create_task(self._close_retired())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_retired(self) -> None:
        while self._retired:
            service = self._retired.pop()
            try:
                await service.close()
            except Exception as e:
                logger.warning("embedding_service_close_failed", error=str(e))

    async def close(self) -> None:
        self.reset()
        if self._closing:
            await asyncio.gather(*self._closing)
        await self._close_retired()
