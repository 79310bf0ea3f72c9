"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    provider: Literal["anthropic", "openai"] = "openai"
    api_key: str = ""
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_tokens: int = 2048
    temperature: float = 0.7
    max_retries: int = 3
    timeout: int = 120


class AgentSettings(BaseModel):
    max_tool_rounds: int = 5
    locale: str = "zh-CN"
    chat_type: Literal["group", "private"] = "group"
    max_messages_limit: Optional[int] = None
    role_definition: str = ""
    response_rules: str = ""


class StorageConfig(BaseModel):
    # One SQLite file per imported chat: <db_dir>/<session_id>.db
    db_dir: str = "./data/databases"
    vector_db_path: str = "./data/ai/vectors/vectors.db"
    embedding_config_path: str = "./data/ai/embedding-config.json"


class RerankConfig(BaseModel):
    enabled: bool = False
    base_url: str = ""
    api_key: str = ""
    model: str = ""
    top_n: int = 20
    timeout: float = 30.0


class RAGSettings(BaseModel):
    candidate_limit: int = 50
    top_k: int = 10
    rewrite_query: bool = False
    chunk_max_chars: int = 1500
    chunk_overlap_messages: int = 0
    cache_size: int = 5000
    rerank: RerankConfig = Field(default_factory=RerankConfig)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    rag: RAGSettings = Field(default_factory=RAGSettings)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
