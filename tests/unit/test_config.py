"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from workflow_claw.config import WorkflowClawConfig, load_config


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
cli:
  terminal_cols: 200
  fallback_bins: [/opt/tools]
output:
  flush_bytes: 4096
engine:
  max_step_runs: 50
"""
    )
    monkeypatch.setenv("WORKFLOW_CLAW_CONFIG", str(config_path))

    config = load_config()
    assert config.cli.terminal_cols == 200
    assert config.cli.terminal_rows == 30
    assert config.cli.fallback_bins == ["/opt/tools"]
    assert config.output.flush_bytes == 4096
    assert config.engine.max_step_runs == 50


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKFLOW_CLAW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("WORKFLOW_CLAW_FAKE_CLI", raising=False)
    monkeypatch.delenv("WORKFLOW_CLAW_DATABASE_URL", raising=False)

    config = load_config()
    assert config.cli.fake is False
    assert config.cli.terminal_name == "xterm-color"
    assert "/usr/local/bin" in config.cli.fallback_bins
    assert config.output.flush_bytes == 1024
    assert config.output.flush_interval == 0.25
    assert config.vault.kdf_iterations >= 100_000
    assert config.engine.max_step_runs is None


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKFLOW_CLAW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("WORKFLOW_CLAW_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("WORKFLOW_CLAW_DATABASE_URL", "memory://")
    monkeypatch.setenv("WORKFLOW_CLAW_FAKE_CLI", "true")

    config = load_config()
    assert config.cli.fake is True
    assert config.database_url == "memory://"
    assert config.resolved_data_dir() == tmp_path / "data"
    assert (tmp_path / "data").is_dir()


def test_default_database_lives_in_data_dir(tmp_path):
    config = WorkflowClawConfig(data_dir=str(tmp_path))
    assert config.resolved_database_url() == f"sqlite://{tmp_path / 'data.db'}"


def test_vault_iterations_floor():
    with pytest.raises(ValidationError):
        WorkflowClawConfig(vault={"kdf_iterations": 10})
