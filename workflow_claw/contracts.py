"""Records exchanged between the engine, its collaborators and storage."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import MISSING_EXIT_CODE, PARSE_FAILURE_SUMMARY

ExecutionMode = Literal["sequential", "parallel"]
EdgeType = Literal["next", "support", "callback", "failure"]
RunStatus = Literal["running", "success", "failed", "needs_input"]
OutcomeStatus = Literal["success", "fail", "needs_input"]


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Folder(BaseModel):
    """A project directory that workflows operate in."""

    id: str = Field(default_factory=new_id)
    path: str
    label: Optional[str] = None


class Workflow(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    folder_id: str
    execution_mode: ExecutionMode = "sequential"


class Step(BaseModel):
    """One workflow node bound to a provider configuration."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    name: str
    description: str = ""
    provider_id: str
    model: Optional[str] = None
    max_iterations: int = Field(default=1, ge=1)
    skills: List[str] = Field(default_factory=list)
    success_criteria: Optional[str] = None
    failure_criteria: Optional[str] = None


class Edge(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: str
    from_step_id: str
    to_step_id: str
    type: EdgeType = "next"


class Provider(BaseModel):
    """An external agent CLI integration."""

    id: str = Field(default_factory=new_id)
    name: str
    cli_command: str
    template: str
    default_model: Optional[str] = None
    env_enc: Optional[str] = None


class Run(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: str
    goal: str
    status: RunStatus = "running"
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None


class StepRun(BaseModel):
    """Record of one physical invocation of a step."""

    id: str = Field(default_factory=new_id)
    run_id: str
    step_id: str
    iteration: int = Field(default=1, ge=1)
    status: str = "running"
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    summary: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class StepOutput(BaseModel):
    """Structured result an agent CLI reports on stdout."""

    status: OutcomeStatus
    summary: str = ""
    files_modified: List[str] = Field(default_factory=list)
    checks: List[str] = Field(default_factory=list)
    next_actions: List[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("files_modified", "checks", "next_actions", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @classmethod
    def failed(cls, summary: str = PARSE_FAILURE_SUMMARY) -> "StepOutput":
        return cls(status="fail", summary=summary)


class CliRunResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None

    @classmethod
    def failure(cls, message: str, stderr: str = "") -> "CliRunResult":
        """Fail result whose stdout is itself a structured fail body."""
        return cls(
            stdout=StepOutput.failed(message).model_dump_json(),
            stderr=stderr,
            exit_code=MISSING_EXIT_CODE,
        )


class SkillExecution(BaseModel):
    name: str
    status: Literal["success", "fail"]
    output: Any = None
    error: Optional[str] = None


class RuleHeader(BaseModel):
    name: str
    description: str
    files: List[str] = Field(default_factory=list)


class RuleFile(BaseModel):
    """A parsed guidance document."""

    file_path: str
    header: RuleHeader
    body: str = ""

    @property
    def name(self) -> str:
        return self.header.name


class RunDetails(BaseModel):
    """A run together with its step runs."""

    run: Run
    steps: List[StepRun] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


def skill_results_json(results: List[SkillExecution]) -> str:
    return json.dumps([r.model_dump(exclude_none=True) for r in results])


__all__ = [
    "CliRunResult",
    "Edge",
    "Folder",
    "Provider",
    "RuleFile",
    "RuleHeader",
    "Run",
    "RunDetails",
    "SkillExecution",
    "Step",
    "StepOutput",
    "StepRun",
    "Workflow",
]
