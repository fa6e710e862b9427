"""Persistence layer for workflow-claw."""

from __future__ import annotations

import os
from typing import Optional

from ..config import WorkflowClawConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

_repository_instance: WorkflowRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[WorkflowClawConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The backend is selected from ``database_url``, which can be provided
    explicitly, via the ``WORKFLOW_CLAW_DATABASE_URL`` environment variable or
    from loaded configuration. Without any of these, a SQLite database in the
    application data directory is used. ``memory://`` selects the in-memory
    repository.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("WORKFLOW_CLAW_DATABASE_URL")
        or config.resolved_database_url()
    )

    if database_url.startswith("memory://"):
        _repository_instance = InMemoryWorkflowRepository()
    elif database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowRepository(path)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
