from __future__ import annotations

import asyncio

import pytest

from chatlog_agent.config import LLMConfig
from chatlog_agent.core.types import EmbeddingSource
from chatlog_agent.errors import EmbeddingConfigError
from chatlog_agent.rag.config import MAX_EMBEDDING_CONFIG_COUNT, EmbeddingConfigManager
from chatlog_agent.rag.embedding import EmbeddingServiceProvider, OpenAIEmbeddingService, build_embedding_service

from conftest import KeywordEmbeddingService


def test_first_config_is_activated(embedding_manager):
    assert not embedding_manager.is_enabled()

    first = embedding_manager.add("primary", "text-embedding-3-small", api_key="sk-1").config
    second = embedding_manager.add("backup", "bge-m3").config

    assert embedding_manager.active_id == first.id
    assert embedding_manager.is_enabled()
    assert [c.id for c in embedding_manager.get_all()] == [first.id, second.id]


def test_config_cap(embedding_manager):
    for i in range(MAX_EMBEDDING_CONFIG_COUNT):
        assert embedding_manager.add(f"cfg{i}", "m").success

    result = embedding_manager.add("one too many", "m")
    assert not result.success
    assert str(MAX_EMBEDDING_CONFIG_COUNT) in result.error
    assert len(embedding_manager.get_all()) == MAX_EMBEDDING_CONFIG_COUNT


def test_deleting_active_config_activates_first_remaining(embedding_manager):
    a = embedding_manager.add("a", "m").config
    b = embedding_manager.add("b", "m").config
    c = embedding_manager.add("c", "m").config
    embedding_manager.set_active(c.id)

    assert embedding_manager.delete(c.id).success
    assert embedding_manager.active_id == a.id

    embedding_manager.delete(a.id)
    embedding_manager.delete(b.id)
    assert embedding_manager.active_id is None
    assert not embedding_manager.is_enabled()


def test_unknown_ids_fail(embedding_manager):
    assert not embedding_manager.set_active("nope").success
    assert not embedding_manager.delete("nope").success
    assert not embedding_manager.update("nope", name="x").success


def test_update_changes_fields_and_timestamp(embedding_manager):
    config = embedding_manager.add("a", "m").config
    result = embedding_manager.update(config.id, model="bge-m3", dimensions=1024)

    assert result.success
    assert embedding_manager.get(config.id).model == "bge-m3"
    assert embedding_manager.get(config.id).updated_at >= config.updated_at
    assert not embedding_manager.update(config.id, id="other").success


def test_listing_masks_api_key(embedding_manager):
    embedding_manager.add("a", "m", api_key="sk-secret")
    (item,) = embedding_manager.list_for_display()

    assert "api_key" not in item
    assert item["api_key_set"] is True
    assert item["active"] is True


def test_store_survives_new_manager_instance(embedding_manager):
    config = embedding_manager.add("a", "m").config
    reloaded = EmbeddingConfigManager(embedding_manager.path)
    assert reloaded.get_active().id == config.id


def test_writes_reset_cached_service(embedding_manager):
    created = []

    def factory(cfg):
        created.append(cfg.model)
        return KeywordEmbeddingService()

    provider = EmbeddingServiceProvider(embedding_manager, factory=factory)
    assert provider.get() is None

    config = embedding_manager.add("a", "m1").config
    service = provider.get()
    assert provider.get() is service

    embedding_manager.update(config.id, model="m2")
    assert provider.get() is not service
    assert created == ["m1", "m2"]


class ClosableEmbeddingService(KeywordEmbeddingService):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    async def close(self) -> None:
        self.closed = True


async def test_replaced_services_are_closed(embedding_manager):
    services: list[ClosableEmbeddingService] = []

    def factory(cfg):
        services.append(ClosableEmbeddingService())
        return services[-1]

    provider = EmbeddingServiceProvider(embedding_manager, factory=factory)
    config = embedding_manager.add("a", "m1").config
    first = provider.get()

    embedding_manager.update(config.id, model="m2")
    await asyncio.sleep(0)
    assert first.closed

    second = provider.get()
    assert second is not first and not second.closed
    await provider.close()
    assert second.closed


def test_reuse_llm_requires_openai_compatible_provider(embedding_manager):
    config = embedding_manager.add("shared", "m", source=EmbeddingSource.REUSE_LLM).config

    with pytest.raises(EmbeddingConfigError):
        build_embedding_service(config, LLMConfig(provider="anthropic", api_key="k"))

    service = build_embedding_service(config, LLMConfig(provider="openai", api_key="k", base_url="http://localhost:1/v1"))
    assert isinstance(service, OpenAIEmbeddingService)
    assert service.model == "m"
