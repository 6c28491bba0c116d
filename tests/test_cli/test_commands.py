from pathlib import Path

import pytest
from typer.testing import CliRunner

from seopages_agent import __version__
import seopages_agent.main as main_module
from seopages_agent.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    # configure_logging binds cached loggers to the runner's captured stderr.
    monkeypatch.setattr(main_module, "configure_logging", lambda config=None: None)


def _config_file(tmp_path: Path, provider: str = "openai", api_key: str = "") -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        (
            "model:\n"
            f"  provider: {provider}\n"
            f"  api_key: '{api_key}'\n"
            "store:\n"
            f"  path: '{tmp_path / 'store.db'}'\n"
        ),
        encoding="utf-8",
    )
    return path


def test_version_command():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"v{__version__}" in result.output


def test_skills_command_lists_catalog(tmp_path: Path):
    result = runner.invoke(app, ["skills", "-c", str(_config_file(tmp_path))])

    assert result.exit_code == 0
    assert "planning" in result.output


def test_missing_credentials_exit_with_configuration_error(tmp_path: Path):
    result = runner.invoke(app, ["generate-page", "item-1", "-c", str(_config_file(tmp_path))])

    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_unknown_provider_is_a_configuration_error(tmp_path: Path):
    config = _config_file(tmp_path, provider="bedrock", api_key="k")

    result = runner.invoke(app, ["init-context", "acme.com", "-c", str(config)])

    assert result.exit_code == 2
    assert "bedrock" in result.output


def test_chat_reads_input_and_exits_cleanly(tmp_path: Path):
    config = _config_file(tmp_path, api_key="k")

    result = runner.invoke(app, ["chat", "-c", str(config)], input="exit\n")

    assert result.exit_code == 0
    assert "Type a message" in result.output
    assert "session:" in result.output
