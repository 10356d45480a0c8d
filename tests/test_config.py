"""Tests for configuration loading."""

import json

from nodeflow.config import EngineConfig, get_default_model, get_nodeflow_config


def write_config(tmp_path, data):
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    (home / "configuration.json").write_text(json.dumps(data), encoding="utf-8")


def test_missing_file_gives_defaults():
    assert get_nodeflow_config() == {}
    config = EngineConfig()
    assert config.max_attempts == 3
    assert config.backoff_ms == (0, 1000, 2000)
    assert config.retry_structural_errors is False
    assert config.default_provider == "litellm"


def test_engine_section_overrides(tmp_path):
    write_config(
        tmp_path,
        {"engine": {"max_attempts": 5, "backoff_ms": [0, 10], "storage_root": "/srv/graphs"}},
    )
    config = EngineConfig()
    assert config.max_attempts == 5
    assert config.backoff_ms == (0, 10)
    assert str(config.storage_root) == "/srv/graphs"


def test_llm_section_selects_default_model(tmp_path):
    write_config(tmp_path, {"llm": {"provider": "anthropic", "model": "claude-3-5-haiku-latest"}})
    assert get_default_model() == "anthropic/claude-3-5-haiku-latest"


def test_corrupt_file_ignored(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    (home / "configuration.json").write_text("{not json", encoding="utf-8")
    assert get_nodeflow_config() == {}
