from pathlib import Path

import seopages_agent.config as config_module
from seopages_agent.config import Config


def test_defaults_match_observed_limits():
    cfg = Config()

    assert cfg.context.max_turns == 8
    assert cfg.context.content_truncate_chars == 10000
    assert cfg.context.markup_truncate_chars == 1000
    assert cfg.context.soft_ceiling_chars == 300000
    assert cfg.context.strict_size_check is False
    assert cfg.generation.timeout_seconds == 300.0
    assert cfg.model.max_steps == 35
    assert cfg.skills.core_skill_id == "planning"
    assert cfg.skills.classification_routes["guide"] == "guide-writer"


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  provider: openai\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "model:\n"
            "  provider: azure\n"
            "  model: gpt-4.1-mini\n"
            "context:\n"
            "  max_turns: 12\n"
            "skills:\n"
            "  disabled:\n"
            "    - geo-auditor\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.provider == "azure"
    assert cfg.model.model == "gpt-4.1-mini"
    assert cfg.context.max_turns == 12
    assert cfg.skills.disabled == ["geo-auditor"]


def test_missing_yaml_falls_back_to_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    cfg = Config.load()

    assert cfg.context.max_turns == 8


def test_env_overrides_nested_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SEOPAGES_CONTEXT__MAX_TURNS", "5")
    monkeypatch.setenv("SEOPAGES_MODEL__API_KEY", "secret")

    cfg = Config()

    assert cfg.context.max_turns == 5
    assert cfg.model.api_key == "secret"


def test_save_round_trip(tmp_path: Path):
    path = tmp_path / "nested" / "config.yaml"
    cfg = Config()
    cfg.context.strict_size_check = True
    cfg.save(path)

    loaded = Config.from_yaml(path)

    assert loaded.context.strict_size_check is True
    assert loaded.skills.classification_routes == cfg.skills.classification_routes


def test_env_overrides_yaml_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text(
        "context:\n  max_turns: 12\n  content_truncate_chars: 4000\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SEOPAGES_CONTEXT__MAX_TURNS", "5")

    cfg = Config.load()

    assert cfg.context.max_turns == 5
    assert cfg.context.content_truncate_chars == 4000
