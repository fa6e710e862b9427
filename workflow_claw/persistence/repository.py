"""Repository abstraction for workflow definitions and run state."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..contracts import Edge, Folder, Provider, Run, Step, StepRun, Workflow


class WorkflowRepository(Protocol):
    """Protocol for persistence backends."""

    # definitions ---------------------------------------------------------
    async def save_folder(self, folder: Folder) -> None:
        """Insert or replace a project folder."""

    async def save_provider(self, provider: Provider) -> None:
        """Insert or replace a provider."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow."""

    async def save_step(self, step: Step) -> None:
        """Insert or replace a step."""

    async def save_edge(self, edge: Edge) -> None:
        """Insert or replace an edge."""

    async def get_folder(self, folder_id: str) -> Folder | None:
        """Retrieve a folder by id."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all workflows."""

    async def list_steps(self, workflow_id: str) -> list[Step]:
        """Return the workflow's steps."""

    async def list_edges(self, workflow_id: str) -> list[Edge]:
        """Return the workflow's edges in declaration order."""

    async def get_provider(self, provider_id: str) -> Provider | None:
        """Retrieve a provider by id."""

    # runs ----------------------------------------------------------------
    async def create_run(self, run: Run) -> None:
        """Persist a new run."""

    async def update_run_status(
        self, run_id: str, status: str, ended_at: datetime | None = None
    ) -> None:
        """Record a run's status and end timestamp."""

    async def get_run(self, run_id: str) -> Run | None:
        """Retrieve a run by id."""

    async def list_runs(self) -> list[Run]:
        """Return all runs, oldest first."""

    async def create_step_run(self, step_run: StepRun) -> None:
        """Persist a new step run."""

    async def update_step_run_stdout(self, step_run_id: str, stdout: str) -> None:
        """Store output captured so far for a step run."""

    async def finish_step_run(
        self,
        step_run_id: str,
        status: str,
        stdout: str,
        stderr: str,
        summary: str,
    ) -> None:
        """Record a step run's final state."""

    async def list_step_runs(self, run_id: str) -> list[StepRun]:
        """Return a run's step runs in creation order."""

    # settings ------------------------------------------------------------
    async def get_setting(self, key: str) -> str | None:
        """Return a stored setting."""

    async def set_setting(self, key: str, value: str) -> None:
        """Persist a setting."""
