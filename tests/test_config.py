"""Tests for config/config_loader.py."""

import logging
from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    AppConfig,
    ModelConfig,
    OrchestrationConfig,
    PromptsConfig,
    load_config,
    longest_call_timeout,
    validate_orchestration,
)


def _settings(**orchestration) -> dict:
    settings = {
        "defaults": {
            "synthesizer": "claude",
            "output_dir": "./output",
            "agents_dir": "./agents",
        },
        "models": {
            "claude": {
                "sdk": "anthropic",
                "model": "claude-sonnet-4-5",
                "api_key_env": "TEST_CLAUDE_KEY",
                "max_tokens": 8192,
            },
            "grok": {
                "sdk": "openai",
                "model": "grok-4",
                "api_key_env": "TEST_XAI_KEY",
                "base_url": "https://api.x.ai/v1",
                "max_tokens": 4096,
                "temperature": 0.2,
            },
        },
        "prompts": {
            "system": "You analyze meetings.",
            "sub_query": "Context:\n{context}\n\nQuestion: {query}",
        },
    }
    if orchestration:
        settings["orchestration"] = orchestration
    return settings


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings()), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.synthesizer == "claude"
    assert isinstance(config.defaults.output_dir, Path)
    assert config.defaults.agents_dir == Path("./agents")


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.models["claude"], ModelConfig)
    assert config.models["claude"].base_url is None
    assert config.models["claude"].temperature is None
    assert config.models["grok"].base_url == "https://api.x.ai/v1"
    assert config.models["grok"].temperature == pytest.approx(0.2)


def test_load_config_prompts(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert "{context}" in config.prompts.sub_query


def test_orchestration_defaults_when_section_missing(minimal_settings):
    config = load_config(minimal_settings)
    assert config.orchestration == OrchestrationConfig()
    assert config.orchestration.conflict_detection_threshold == 0.75
    assert config.orchestration.retry_attempts == 2


def test_orchestration_section_overrides(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings(
        role_assignment_strategy="primary-only",
        enable_debate_phase=False,
        enable_rlm=False,
        debate_min_perspectives=2,
        reduce_timeout_sec=90,
        conflict={"conflict_markers": ["nope"], "max_themes": 3},
    )), encoding="utf-8")
    orch = load_config(path).orchestration
    assert orch.role_assignment_strategy == "primary-only"
    assert orch.enable_debate_phase is False
    assert orch.enable_rlm is False
    assert orch.debate_min_perspectives == 2
    assert orch.reduce_timeout_sec == 90.0
    assert orch.conflict.conflict_markers == ("nope",)
    assert orch.conflict.max_themes == 3
    assert "also" in orch.conflict.agreement_markers


def test_invalid_orchestration_rejected(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings(role_assignment_strategy="random")), encoding="utf-8")
    with pytest.raises(ValueError, match="role_assignment_strategy"):
        load_config(path)


@pytest.mark.parametrize("changes", [
    {"conflict_detection_threshold": 1.5},
    {"retry_attempts": -1},
    {"reduce_timeout_sec": 0},
    {"max_sub_queries": 0},
    {"max_concurrent": -2},
    {"debate_min_perspectives": 0},
])
def test_validate_orchestration_bounds(changes):
    with pytest.raises(ValueError):
        validate_orchestration(OrchestrationConfig(**changes))


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    monkeypatch.delenv("TEST_XAI_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == {"claude"}


def test_load_config_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_CLAUDE_KEY", raising=False)
    config = load_config(minimal_settings)
    assert "claude" not in config.available_providers


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_shipped_settings_load():
    config = load_config()
    assert config.defaults.synthesizer in config.models
    assert {m.sdk for m in config.models.values()} <= {"anthropic", "openai", "google-genai"}
    for model in config.models.values():
        assert model.timeout_sec == longest_call_timeout(config.orchestration)


def test_model_timeout_defaults_to_longest_call_timeout(minimal_settings):
    config = load_config(minimal_settings)
    assert longest_call_timeout(config.orchestration) == 45.0
    assert config.models["claude"].timeout_sec == 45.0
    assert config.models["grok"].timeout_sec == 45.0


def test_model_timeout_follows_orchestration_timeouts(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(_settings(debate_timeout_sec=80)), encoding="utf-8")
    assert load_config(path).models["claude"].timeout_sec == 80.0


def test_mismatched_model_timeout_warns(tmp_path, caplog):
    settings = _settings()
    settings["models"]["grok"]["timeout_sec"] = 90
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="config.config_loader"):
        config = load_config(path)
    assert config.models["grok"].timeout_sec == 90.0
    assert "Model grok timeout_sec=90" in caplog.text
    assert "claude" not in caplog.text
