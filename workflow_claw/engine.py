"""Workflow execution engine.

A run walks the step graph starting from every step without an incoming
``next`` edge. Each visited step asks the agent CLI for a structured result
and the result decides which edges are followed:

- ``needs_input`` pauses the run for human review.
- ``fail`` follows ``failure`` edges, or fails the run when there are none.
- ``success`` runs ``support`` targets, then ``next`` targets, then each
  ``callback`` target followed by the same step again with the next
  iteration number. ``max_iterations`` bounds those re-runs.

Traversal uses an explicit work stack so long callback chains do not nest
coroutines. Parallel workflows fan out ``support``/``next`` targets as
concurrent walks and join on all of them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from .config import WorkflowClawConfig, load_config
from .constants import (
    EDGE_CALLBACK,
    EDGE_FAILURE,
    EDGE_NEXT,
    EDGE_SUPPORT,
    RUN_FAILED,
    RUN_NEEDS_INPUT,
    RUN_RUNNING,
    RUN_SUCCESS,
    STATUS_FAIL,
    STATUS_NEEDS_INPUT,
)
from .contracts import (
    Edge,
    Provider,
    RuleFile,
    Run,
    SkillExecution,
    Step,
    StepOutput,
    StepRun,
    Workflow,
    skill_results_json,
    utcnow,
)
from .errors import ConfigurationError, VaultError, VaultLocked
from .locks import ResourceSerializer
from .memory import MEMORY_FILE, ensure_memory, load_memory_text, memory_path
from .output import OutputRecorder
from .persistence import WorkflowRepository
from .prd import append_agent_update, ensure_prd, prd_path
from .rules import RuleSelector, list_rules
from .runner import AgentCliRunner, CliRunRequest
from .skills import SkillRunner
from .vault import SecretVault, decrypt_provider_env

logger = logging.getLogger(__name__)

RULES_DIR = "rules"
SKILLS_DIR = "skills"


# ---------------------------------------------------------------------------
# Prompt and result protocol


def build_step_prompt(
    goal: str,
    step: Step,
    prd_text: str,
    memory_text: str,
    rules: List[RuleFile],
    skill_results: List[SkillExecution],
) -> str:
    rules_block = "\n\n".join(f"# {rule.header.name}\n{rule.body}" for rule in rules)
    return (
        "You are an autonomous LLM step in a workflow.\n\n"
        f"Goal:\n{goal}\n\n"
        f"Step Name: {step.name}\n"
        f"Step Description: {step.description}\n"
        f"Success Criteria: {step.success_criteria or ''}\n"
        f"Failure Criteria: {step.failure_criteria or ''}\n\n"
        f"PRD:\n{prd_text}\n\n"
        f"MEMORY:\n{memory_text}\n\n"
        f"RULES:\n{rules_block}\n\n"
        "Return JSON ONLY with:\n"
        "{\n"
        '  "status": "success"|"fail"|"needs_input",\n'
        '  "summary": string,\n'
        '  "files_modified": string[],\n'
        '  "checks": string[],\n'
        '  "next_actions": string[]\n'
        "}\n"
        f"\n\nSkill Outputs:\n{skill_results_json(skill_results)}"
    )


_VALUE_START = re.compile(r"[\[{]")


def _next_value(raw: str, pos: int) -> int:
    match = _VALUE_START.search(raw, pos)
    return match.start() if match else -1


def parse_step_output(raw: str) -> StepOutput:
    """Extract the structured step result from raw CLI output.

    The first top-level JSON object in the text decides the result. Decoded
    arrays are skipped whole, so objects nested inside them (or inside the
    deciding object) are never considered. An object that is not a valid
    step result, or no object at all, maps to a fail result.
    """
    decoder = json.JSONDecoder()
    index = _next_value(raw, 0)
    while index != -1:
        try:
            value, end = decoder.raw_decode(raw, index)
        except ValueError:
            index = _next_value(raw, index + 1)
            continue
        if isinstance(value, dict):
            try:
                return StepOutput.model_validate(value)
            except ValidationError:
                return StepOutput.failed()
        index = _next_value(raw, end)
    return StepOutput.failed()


# ---------------------------------------------------------------------------
# Graph and traversal state


class WorkflowGraph:
    """Adjacency maps over a snapshot of a workflow's steps and edges."""

    def __init__(self, steps: Iterable[Step], edges: Iterable[Edge]) -> None:
        self._steps: Dict[str, Step] = {}
        for step in steps:
            self._steps[step.id] = step
        self._targets: Dict[Tuple[str, str], List[str]] = defaultdict(list)
        self._next_targets = set()
        for edge in edges:
            self._targets[(edge.from_step_id, edge.type)].append(edge.to_step_id)
            if edge.type == EDGE_NEXT:
                self._next_targets.add(edge.to_step_id)

    def __len__(self) -> int:
        return len(self._steps)

    def step(self, step_id: str) -> Step:
        try:
            return self._steps[step_id]
        except KeyError:
            raise ConfigurationError(f"Step {step_id} is not part of the workflow") from None

    def provider_ids(self) -> List[str]:
        return list(dict.fromkeys(s.provider_id for s in self._steps.values()))

    def start_steps(self) -> List[str]:
        """Steps without an incoming ``next`` edge, in declaration order."""
        return [sid for sid in self._steps if sid not in self._next_targets]

    def targets(self, step_id: str, edge_type: str) -> List[str]:
        return list(self._targets.get((step_id, edge_type), ()))


@dataclass(frozen=True)
class Visit:
    """Execute ``step_id`` at ``iteration``."""

    step_id: str
    iteration: int = 1


@dataclass(frozen=True)
class FanOut:
    """Execute several steps fresh, honouring the workflow's execution mode."""

    step_ids: Tuple[str, ...]


WorkItem = Union[Visit, FanOut]


@dataclass
class RunContext:
    """Everything a run's steps share."""

    run: Run
    workflow: Workflow
    folder_path: str
    graph: WorkflowGraph
    providers: Dict[str, Provider]
    rules: List[RuleFile]
    prd_path: Path
    skills_dir: Path
    status: str = RUN_RUNNING
    step_runs: int = 0

    @property
    def goal(self) -> str:
        return self.run.goal

    @property
    def parallel(self) -> bool:
        return self.workflow.execution_mode == "parallel"


# ---------------------------------------------------------------------------
# Engine


class WorkflowEngine:
    """Runs workflows stored in a repository through their agent CLIs."""

    def __init__(
        self,
        repository: WorkflowRepository,
        vault: Optional[SecretVault] = None,
        runner: Optional[AgentCliRunner] = None,
        skill_runner: Optional[SkillRunner] = None,
        serializer: Optional[ResourceSerializer] = None,
        config: Optional[WorkflowClawConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository
        self.vault = vault
        self.runner = runner or AgentCliRunner(self.config.cli)
        self.skill_runner = skill_runner or SkillRunner(fake=self.config.cli.fake)
        self.serializer = serializer or ResourceSerializer()
        self.rule_selector = RuleSelector(self.runner)

    # -- run lifecycle -----------------------------------------------------

    async def execute_workflow(self, workflow_id: str, goal: str) -> str:
        """Execute a workflow once for ``goal`` and return the run id.

        Raises:
            ConfigurationError: the workflow, its folder, a step's provider or
                an edge target is missing. The run (if created) is marked
                ``failed`` first.
        """
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise ConfigurationError(f"Workflow {workflow_id} not found")
        folder = await self.repository.get_folder(workflow.folder_id)
        if folder is None:
            raise ConfigurationError(
                f"Folder {workflow.folder_id} for workflow {workflow.name} not found"
            )

        graph = WorkflowGraph(
            await self.repository.list_steps(workflow_id),
            await self.repository.list_edges(workflow_id),
        )

        run = Run(workflow_id=workflow_id, goal=goal)
        await self.repository.create_run(run)
        logger.info(
            f"Started run {run.id} of workflow {workflow.name} "
            f"({workflow.execution_mode}, {len(graph)} steps)"
        )

        folder_path = folder.path
        rules_dir = Path(folder_path) / RULES_DIR
        skills_dir = Path(folder_path) / SKILLS_DIR
        rules_dir.mkdir(parents=True, exist_ok=True)
        skills_dir.mkdir(parents=True, exist_ok=True)

        ctx = RunContext(
            run=run,
            workflow=workflow,
            folder_path=folder_path,
            graph=graph,
            providers=await self._load_providers(graph),
            rules=list_rules(rules_dir),
            prd_path=prd_path(folder_path, goal),
            skills_dir=skills_dir,
        )

        try:
            await self._walk(ctx, [FanOut(tuple(graph.start_steps()))])
        except ConfigurationError as exc:
            logger.error(f"Run {run.id} aborted: {exc}")
            await self._finish_run(ctx, RUN_FAILED)
            raise

        await self._finish_run(ctx, RUN_SUCCESS)
        logger.info(f"Run {run.id} finished with status {ctx.status}")
        return run.id

    async def _load_providers(self, graph: WorkflowGraph) -> Dict[str, Provider]:
        providers: Dict[str, Provider] = {}
        for provider_id in graph.provider_ids():
            provider = await self.repository.get_provider(provider_id)
            if provider is not None:
                providers[provider_id] = provider
        return providers

    async def _finish_run(self, ctx: RunContext, status: str) -> None:
        """Move the run to a terminal status; the first terminal status wins."""
        if ctx.status != RUN_RUNNING:
            return
        ctx.status = status
        await self.repository.update_run_status(ctx.run.id, status, utcnow())

    # -- traversal ---------------------------------------------------------

    async def _walk(self, ctx: RunContext, items: List[WorkItem]) -> None:
        stack: List[WorkItem] = list(reversed(items))
        while stack:
            item = stack.pop()
            if isinstance(item, FanOut):
                if ctx.parallel and len(item.step_ids) > 1:
                    await self._join(ctx, item.step_ids)
                else:
                    stack.extend(Visit(sid) for sid in reversed(item.step_ids))
                continue

            output = await self._execute_step(ctx, item.step_id, item.iteration)
            if output is None:
                continue
            stack.extend(reversed(await self._route(ctx, item, output)))

    async def _join(self, ctx: RunContext, step_ids: Tuple[str, ...]) -> None:
        results = await asyncio.gather(
            *(self._walk(ctx, [Visit(sid)]) for sid in step_ids),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _route(
        self, ctx: RunContext, visit: Visit, output: StepOutput
    ) -> List[WorkItem]:
        graph = ctx.graph
        step_id = visit.step_id

        if output.status == STATUS_NEEDS_INPUT:
            await self._finish_run(ctx, RUN_NEEDS_INPUT)
            return []

        if output.status == STATUS_FAIL:
            failure_targets = graph.targets(step_id, EDGE_FAILURE)
            if not failure_targets:
                await self._finish_run(ctx, RUN_FAILED)
                return []
            return [Visit(target) for target in failure_targets]

        items: List[WorkItem] = []
        support = graph.targets(step_id, EDGE_SUPPORT)
        if support:
            items.append(FanOut(tuple(support)))
        following = graph.targets(step_id, EDGE_NEXT)
        if following:
            items.append(FanOut(tuple(following)))
        for target in graph.targets(step_id, EDGE_CALLBACK):
            items.append(Visit(target))
            items.append(Visit(step_id, visit.iteration + 1))
        return items

    # -- a single step -----------------------------------------------------

    def _guard_tripped(self, ctx: RunContext) -> bool:
        limit = self.config.engine.max_step_runs
        return limit is not None and ctx.step_runs >= limit

    def _provider_env(self, provider: Provider) -> Dict[str, str]:
        if not provider.env_enc:
            return {}
        if self.vault is None or not self.vault.is_unlocked():
            logger.warning(
                f"Vault locked; running provider {provider.name} without its environment"
            )
            return {}
        try:
            return decrypt_provider_env(self.vault, provider.env_enc)
        except VaultLocked:
            return {}
        except VaultError as exc:
            logger.warning(f"Could not decrypt environment of {provider.name}: {exc}")
            return {}

    async def _ensure_memory(
        self, ctx: RunContext, provider: Provider, env: Dict[str, str]
    ) -> None:
        target = str(Path(ctx.folder_path) / MEMORY_FILE)
        async with self.serializer.hold(target):
            await ensure_memory(self.runner, provider, ctx.folder_path, env)

    async def _run_skills(
        self, ctx: RunContext, step: Step, prd_text: str, memory_text: str
    ) -> List[SkillExecution]:
        results: List[SkillExecution] = []
        payload = {
            "goal": ctx.goal,
            "step": step.model_dump(),
            "prd": prd_text,
            "memory": memory_text,
        }
        for name in step.skills:
            result = await self.skill_runner.run(ctx.skills_dir, name, payload)
            logger.debug(f"Skill {name} for step {step.name}: {result.status}")
            results.append(result)
        return results

    async def _execute_step(
        self, ctx: RunContext, step_id: str, iteration: int
    ) -> Optional[StepOutput]:
        """Run one step once. Returns ``None`` when the step was not executed."""
        step = ctx.graph.step(step_id)
        provider = ctx.providers.get(step.provider_id)
        if provider is None:
            raise ConfigurationError(
                f"Provider {step.provider_id} for step {step.name} is missing"
            )

        if iteration > step.max_iterations:
            logger.debug(
                f"Step {step.name} reached max iterations ({step.max_iterations})"
            )
            return None

        if self._guard_tripped(ctx):
            logger.warning(
                f"Run {ctx.run.id} hit max_step_runs={self.config.engine.max_step_runs}"
            )
            await self._finish_run(ctx, RUN_FAILED)
            return None

        env = self._provider_env(provider)
        await self._ensure_memory(ctx, provider, env)
        ensure_prd(ctx.prd_path, ctx.goal)

        prd_text = ctx.prd_path.read_text(encoding="utf-8")
        memory_text = load_memory_text(ctx.folder_path)
        selected_rules = await self.rule_selector.select(
            provider, ctx.folder_path, step, prd_text, memory_text, ctx.rules, env
        )
        skill_results = await self._run_skills(ctx, step, prd_text, memory_text)
        prompt = build_step_prompt(
            ctx.goal, step, prd_text, memory_text, selected_rules, skill_results
        )

        step_run = StepRun(run_id=ctx.run.id, step_id=step.id, iteration=iteration)
        await self.repository.create_step_run(step_run)
        ctx.step_runs += 1
        logger.info(f"Running step {step.name} (iteration {iteration})")

        async def save_stdout(text: str) -> None:
            await self.repository.update_step_run_stdout(step_run.id, text)

        request = CliRunRequest(
            cli_command=provider.cli_command,
            template=provider.template,
            prompt=prompt,
            model=step.model or provider.default_model,
            cwd=ctx.folder_path,
            step_name=step.name,
            prd_path=str(ctx.prd_path),
            memory_path=str(memory_path(ctx.folder_path)),
            env=env,
        )
        async with OutputRecorder(save_stdout, self.config.output) as recorder:
            result = await self.runner.run(request, on_data=recorder.feed)

        output = parse_step_output(result.stdout)
        await append_agent_update(self.serializer, ctx.prd_path, step.name, output)
        await self.repository.finish_step_run(
            step_run.id, output.status, result.stdout, result.stderr, output.summary
        )
        logger.info(f"Step {step.name} reported {output.status}: {output.summary}")
        return output


async def execute_workflow(
    workflow_id: str,
    goal: str,
    repository: WorkflowRepository,
    vault: Optional[SecretVault] = None,
    config: Optional[WorkflowClawConfig] = None,
) -> str:
    """Convenience wrapper around :meth:`WorkflowEngine.execute_workflow`."""
    engine = WorkflowEngine(repository, vault=vault, config=config)
    return await engine.execute_workflow(workflow_id, goal)
