"""Load workflow definitions from YAML files into a repository."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..contracts import (
    Edge,
    EdgeType,
    ExecutionMode,
    Folder,
    Provider,
    Step,
    Workflow,
    new_id,
)
from ..errors import VaultLocked
from ..persistence import WorkflowRepository
from ..vault import SecretVault, encrypt_provider_env


class FolderDefinition(BaseModel):
    id: str = Field(default_factory=new_id)
    path: str
    label: Optional[str] = None


class ProviderDefinition(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    cli_command: str
    template: str
    default_model: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)


class WorkflowHeader(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    execution_mode: ExecutionMode = "sequential"


class StepDefinition(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    provider_id: str
    model: Optional[str] = None
    max_iterations: int = Field(default=1, ge=1)
    skills: List[str] = Field(default_factory=list)
    success_criteria: Optional[str] = None
    failure_criteria: Optional[str] = None


class EdgeDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    from_step_id: str = Field(alias="from")
    to_step_id: str = Field(alias="to")
    type: EdgeType = "next"


class WorkflowDefinition(BaseModel):
    """A complete workflow file: folder, providers, workflow, steps, edges."""

    folder: FolderDefinition
    providers: List[ProviderDefinition] = Field(default_factory=list)
    workflow: WorkflowHeader
    steps: List[StepDefinition] = Field(default_factory=list)
    edges: List[EdgeDefinition] = Field(default_factory=list)


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Parse a YAML workflow file; relative folder paths follow the file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    definition = WorkflowDefinition(**data)
    folder_path = Path(definition.folder.path).expanduser()
    if not folder_path.is_absolute():
        folder_path = (path.parent / folder_path).resolve()
    definition.folder.path = str(folder_path)
    return definition


async def save_definition(
    definition: WorkflowDefinition,
    repository: WorkflowRepository,
    vault: Optional[SecretVault] = None,
) -> Workflow:
    """Write every record of ``definition``.

    Provider environments are encrypted with ``vault``; ``VaultLocked`` is
    raised when one is present and the vault is missing or locked.
    """
    for provider in definition.providers:
        if provider.env and (vault is None or not vault.is_unlocked()):
            raise VaultLocked(f"Vault locked; cannot store env for provider {provider.name}")

    await repository.save_folder(Folder(**definition.folder.model_dump()))
    for provider in definition.providers:
        env_enc = encrypt_provider_env(vault, provider.env) if provider.env else None
        await repository.save_provider(
            Provider(**provider.model_dump(exclude={"env"}), env_enc=env_enc)
        )

    workflow = Workflow(**definition.workflow.model_dump(), folder_id=definition.folder.id)
    await repository.save_workflow(workflow)
    for step in definition.steps:
        await repository.save_step(Step(**step.model_dump(), workflow_id=workflow.id))
    for edge in definition.edges:
        await repository.save_edge(Edge(**edge.model_dump(), workflow_id=workflow.id))
    return workflow
