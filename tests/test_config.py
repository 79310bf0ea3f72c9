from __future__ import annotations

import pytest

from chatlog_agent.config import load_config

CONFIG_YAML = """
data_dir: ${TEST_DATA_ROOT}/chatlog
llm:
  provider: anthropic
  api_key: ${TEST_LLM_KEY}
  model: claude-sonnet-4-5
agent:
  max_tool_rounds: 3
  locale: en-US
storage:
  db_dir: ${data_dir}/databases
rag:
  rerank:
    enabled: true
    base_url: https://api.jina.ai/v1
"""


def test_load_config_interpolates_env_and_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_DATA_ROOT", "/srv")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(CONFIG_YAML, encoding="utf-8")
    env_file = tmp_path / ".env"
    env_file.write_text("TEST_LLM_KEY=sk-from-dotenv\n", encoding="utf-8")

    config = load_config(config_file, env_file)

    assert config.data_dir == "/srv/chatlog"
    assert config.storage.db_dir == "/srv/chatlog/databases"
    assert config.llm.provider == "anthropic"
    assert config.llm.api_key == "sk-from-dotenv"
    assert config.agent.max_tool_rounds == 3
    assert config.rag.rerank.enabled
    assert config.rag.top_k == 10


def test_unset_variables_are_left_as_is(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("llm:\n  api_key: ${CHATLOG_TEST_UNSET_VAR}\n", encoding="utf-8")
    config = load_config(config_file, tmp_path / "missing.env")
    assert config.llm.api_key == "${CHATLOG_TEST_UNSET_VAR}"


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")
