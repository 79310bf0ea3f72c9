"""Embedding configuration store: multiple named configs, at most one active.

Semantic search is enabled exactly when an active config exists.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from chatlog_agent.core.types import EmbeddingSource
from chatlog_agent.log import get_logger

logger = get_logger(__name__)

MAX_EMBEDDING_CONFIG_COUNT = 10

_MUTABLE_FIELDS = {"name", "source", "base_url", "api_key", "model", "dimensions"}


def _now_ms() -> int:
    return int(time.time() * 1000)


class EmbeddingServiceConfig(BaseModel):
    id: str
    name: str
    source: EmbeddingSource = EmbeddingSource.API
    base_url: Optional[str] = None
    api_key: str = ""
    model: str = "text-embedding-3-small"
    dimensions: Optional[int] = None
    created_at: int = Field(default_factory=_now_ms)
    updated_at: int = Field(default_factory=_now_ms)

    def display_dict(self) -> dict[str, Any]:
        """Serializable view with the api key replaced by ``api_key_set``."""
        data = self.model_dump(mode="json", exclude={"api_key"})
        data["api_key_set"] = bool(self.api_key)
        return data


class EmbeddingConfigStore(BaseModel):
    configs: list[EmbeddingServiceConfig] = Field(default_factory=list)
    active_config_id: Optional[str] = None


@dataclass
class ConfigResult:
    success: bool
    config: Optional[EmbeddingServiceConfig] = None
    error: Optional[str] = None


class EmbeddingConfigManager:
    """Reads and writes the embedding config JSON file.

    The file is re-read on every call so separate processes see each other's
    writes. Every successful write runs the registered invalidation hooks.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._hooks: list[Callable[[], None]] = []

    @property
    def path(self) -> Path:
        return self._path

    def add_invalidation_hook(self, hook: Callable[[], None]) -> None:
        self._hooks.append(hook)

    def load(self) -> EmbeddingConfigStore:
        if not self._path.exists():
            return EmbeddingConfigStore()
        try:
            return EmbeddingConfigStore.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            logger.error("embedding_config_load_failed", path=str(self._path), error=str(e))
            return EmbeddingConfigStore()

    def _save(self, store: EmbeddingConfigStore) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(store.model_dump_json(indent=2), encoding="utf-8")
        logger.debug("embedding_config_saved", path=str(self._path))
        for hook in self._hooks:
            hook()

    # ── Queries ─────────────────────────────────────────────────────

    def get_all(self) -> list[EmbeddingServiceConfig]:
        return self.load().configs

    def get(self, config_id: str) -> Optional[EmbeddingServiceConfig]:
        return next((c for c in self.load().configs if c.id == config_id), None)

    def get_active(self) -> Optional[EmbeddingServiceConfig]:
        store = self.load()
        if not store.active_config_id:
            return None
        return next((c for c in store.configs if c.id == store.active_config_id), None)

    @property
    def active_id(self) -> Optional[str]:
        return self.load().active_config_id

    def is_enabled(self) -> bool:
        return self.get_active() is not None

    def list_for_display(self) -> list[dict[str, Any]]:
        store = self.load()
        items = []
        for config in store.configs:
            item = config.display_dict()
            item["active"] = config.id == store.active_config_id
            items.append(item)
        return items

    # ── Mutations ───────────────────────────────────────────────────

    def add(
        self,
        name: str,
        model: str,
        source: EmbeddingSource = EmbeddingSource.API,
        base_url: Optional[str] = None,
        api_key: str = "",
        dimensions: Optional[int] = None,
    ) -> ConfigResult:
        """Add a config; the first one ever added becomes active."""
        store = self.load()
        if len(store.configs) >= MAX_EMBEDDING_CONFIG_COUNT:
            return ConfigResult(
                success=False, error=f"At most {MAX_EMBEDDING_CONFIG_COUNT} embedding configs can be added"
            )

        config = EmbeddingServiceConfig(
            id=str(uuid.uuid4()),
            name=name,
            source=source,
            base_url=base_url,
            api_key=api_key,
            model=model,
            dimensions=dimensions,
        )
        store.configs.append(config)
        if len(store.configs) == 1:
            store.active_config_id = config.id

        self._save(store)
        logger.info("embedding_config_added", name=name, model=model, config_id=config.id)
        return ConfigResult(success=True, config=config)

    def update(self, config_id: str, **changes: Any) -> ConfigResult:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            return ConfigResult(success=False, error=f"Unknown fields: {', '.join(sorted(unknown))}")

        store = self.load()
        for index, config in enumerate(store.configs):
            if config.id == config_id:
                updated = config.model_copy(update={**changes, "updated_at": _now_ms()})
                updated = EmbeddingServiceConfig.model_validate(updated.model_dump())
                store.configs[index] = updated
                self._save(store)
                logger.info("embedding_config_updated", config_id=config_id, fields=sorted(changes))
                return ConfigResult(success=True, config=updated)
        return ConfigResult(success=False, error="Configuration not found")

    def delete(self, config_id: str) -> ConfigResult:
        """Delete a config; deleting the active one activates the first remaining."""
        store = self.load()
        config = next((c for c in store.configs if c.id == config_id), None)
        if config is None:
            return ConfigResult(success=False, error="Configuration not found")

        store.configs.remove(config)
        if store.active_config_id == config_id:
            store.active_config_id = store.configs[0].id if store.configs else None

        self._save(store)
        logger.info("embedding_config_deleted", name=config.name, config_id=config_id)
        return ConfigResult(success=True, config=config)

    def set_active(self, config_id: str) -> ConfigResult:
        store = self.load()
        config = next((c for c in store.configs if c.id == config_id), None)
        if config is None:
            return ConfigResult(success=False, error="Configuration not found")

        store.active_config_id = config_id
        self._save(store)
        logger.info("embedding_config_activated", name=config.name, config_id=config_id)
        return ConfigResult(success=True, config=config)
