from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_FALLBACK_BINS

MIN_KDF_ITERATIONS = 100_000


class CliConfig(BaseModel):
    """Settings for spawning agent CLIs."""

    fake: bool = False
    terminal_name: str = "xterm-color"
    terminal_cols: int = 120
    terminal_rows: int = 30
    fallback_bins: List[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_BINS))


class OutputConfig(BaseModel):
    """Coalescing thresholds for streamed step output."""

    flush_bytes: int = 1024
    flush_interval: float = 0.25
    queue_size: int = 256


class VaultConfig(BaseModel):
    """Key derivation settings for the secret vault."""

    kdf_iterations: int = 120_000

    @field_validator("kdf_iterations")
    @classmethod
    def _enough_iterations(cls, value: int) -> int:
        if value < MIN_KDF_ITERATIONS:
            raise ValueError(f"kdf_iterations must be at least {MIN_KDF_ITERATIONS}")
        return value


class EngineConfig(BaseModel):
    """Execution engine limits."""

    max_step_runs: Optional[int] = None


class WorkflowClawConfig(BaseModel):
    """Top-level configuration model."""

    data_dir: Optional[str] = None
    database_url: Optional[str] = None
    cli: CliConfig = CliConfig()
    output: OutputConfig = OutputConfig()
    vault: VaultConfig = VaultConfig()
    engine: EngineConfig = EngineConfig()

    def resolved_data_dir(self) -> Path:
        """Return the data directory, creating it when missing."""
        path = Path(self.data_dir or Path.home() / ".workflow-claw").expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite://{self.resolved_data_dir() / 'data.db'}"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def load_config(path: Optional[str] = None) -> WorkflowClawConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to the
            WORKFLOW_CLAW_CONFIG env variable or 'workflow-claw.yaml' in the
            current directory.
    """

    config_path = path or os.getenv("WORKFLOW_CLAW_CONFIG", "workflow-claw.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = WorkflowClawConfig(**data)
    else:
        config = WorkflowClawConfig()

    env_data_dir = os.getenv("WORKFLOW_CLAW_DATA_DIR")
    if env_data_dir:
        config.data_dir = env_data_dir
    env_db_url = os.getenv("WORKFLOW_CLAW_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    if _env_flag("WORKFLOW_CLAW_FAKE_CLI"):
        config.cli.fake = True
    return config
