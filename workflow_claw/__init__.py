"""workflow-claw: run graphs of agent CLI steps against a project folder."""

from .contracts import Edge, Folder, Provider, Run, Step, StepOutput, StepRun, Workflow
from .engine import WorkflowEngine, execute_workflow
from .locks import ResourceSerializer
from .persistence import get_repository
from .runner import AgentCliRunner
from .skills import SkillRunner, run_skill
from .vault import SecretVault

__version__ = "0.1.0"
__all__ = [
    "AgentCliRunner",
    "Edge",
    "Folder",
    "Provider",
    "ResourceSerializer",
    "Run",
    "SecretVault",
    "SkillRunner",
    "Step",
    "StepOutput",
    "StepRun",
    "Workflow",
    "WorkflowEngine",
    "execute_workflow",
    "get_repository",
    "run_skill",
]
