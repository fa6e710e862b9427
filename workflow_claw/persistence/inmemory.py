"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime
from typing import Dict

from ..contracts import Edge, Folder, Provider, Run, Step, StepRun, Workflow
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._folders: Dict[str, Folder] = {}
        self._providers: Dict[str, Provider] = {}
        self._workflows: Dict[str, Workflow] = {}
        self._steps: Dict[str, Step] = {}
        self._edges: Dict[str, Edge] = {}
        self._runs: Dict[str, Run] = {}
        self._step_runs: Dict[str, StepRun] = {}
        self._settings: Dict[str, str] = {}

    # ------------------------------------------------------------------
    async def save_folder(self, folder: Folder) -> None:
        self._folders[folder.id] = folder.model_copy()

    async def save_provider(self, provider: Provider) -> None:
        self._providers[provider.id] = provider.model_copy()

    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy()

    async def save_step(self, step: Step) -> None:
        self._steps[step.id] = step.model_copy(deep=True)

    async def save_edge(self, edge: Edge) -> None:
        self._edges[edge.id] = edge.model_copy()

    async def get_folder(self, folder_id: str) -> Folder | None:
        return self._folders.get(folder_id)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self._workflows.get(workflow_id)

    async def list_workflows(self) -> list[Workflow]:
        return list(self._workflows.values())

    async def list_steps(self, workflow_id: str) -> list[Step]:
        return [s for s in self._steps.values() if s.workflow_id == workflow_id]

    async def list_edges(self, workflow_id: str) -> list[Edge]:
        return [e for e in self._edges.values() if e.workflow_id == workflow_id]

    async def get_provider(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id)

    # ------------------------------------------------------------------
    async def create_run(self, run: Run) -> None:
        self._runs[run.id] = run.model_copy()

    async def update_run_status(
        self, run_id: str, status: str, ended_at: datetime | None = None
    ) -> None:
        run = self._runs.get(run_id)
        if run:
            run.status = status
            run.ended_at = ended_at

    async def get_run(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    async def list_runs(self) -> list[Run]:
        return sorted(self._runs.values(), key=lambda r: r.started_at)

    async def create_step_run(self, step_run: StepRun) -> None:
        self._step_runs[step_run.id] = step_run.model_copy()

    async def update_step_run_stdout(self, step_run_id: str, stdout: str) -> None:
        step_run = self._step_runs.get(step_run_id)
        if step_run:
            step_run.stdout = stdout

    async def finish_step_run(
        self,
        step_run_id: str,
        status: str,
        stdout: str,
        stderr: str,
        summary: str,
    ) -> None:
        step_run = self._step_runs.get(step_run_id)
        if step_run:
            step_run.status = status
            step_run.stdout = stdout
            step_run.stderr = stderr
            step_run.summary = summary

    async def list_step_runs(self, run_id: str) -> list[StepRun]:
        return [s for s in self._step_runs.values() if s.run_id == run_id]

    # ------------------------------------------------------------------
    async def get_setting(self, key: str) -> str | None:
        return self._settings.get(key)

    async def set_setting(self, key: str, value: str) -> None:
        self._settings[key] = value
