import pytest

import workflow_claw.persistence as persistence
from workflow_claw.contracts import Edge, Folder, Provider, Run, Step, StepRun, Workflow, utcnow
from workflow_claw.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    get_repository,
)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryWorkflowRepository()
    return SQLiteWorkflowRepository(tmp_path / "wf.db")


@pytest.mark.asyncio
async def test_definitions_round_trip(repo):
    folder = Folder(path="/work", label="work")
    provider = Provider(name="codex", cli_command="codex", template="{{prompt}}", env_enc="blob")
    workflow = Workflow(name="review", folder_id=folder.id, execution_mode="parallel")
    first = Step(
        workflow_id=workflow.id,
        name="plan",
        provider_id=provider.id,
        max_iterations=3,
        skills=["lint", "test"],
    )
    second = Step(workflow_id=workflow.id, name="build", provider_id=provider.id)
    edge = Edge(workflow_id=workflow.id, from_step_id=first.id, to_step_id=second.id)

    await repo.save_folder(folder)
    await repo.save_provider(provider)
    await repo.save_workflow(workflow)
    await repo.save_step(first)
    await repo.save_step(second)
    await repo.save_edge(edge)

    assert await repo.get_folder(folder.id) == folder
    assert await repo.get_provider(provider.id) == provider
    assert await repo.get_workflow(workflow.id) == workflow
    assert await repo.list_workflows() == [workflow]
    assert await repo.list_steps(workflow.id) == [first, second]
    assert await repo.list_edges(workflow.id) == [edge]
    assert await repo.get_workflow("missing") is None
    assert await repo.list_steps("missing") == []


@pytest.mark.asyncio
async def test_saving_again_updates_in_place(repo):
    folder = Folder(path="/work")
    workflow = Workflow(name="a", folder_id=folder.id)
    other = Workflow(name="b", folder_id=folder.id)
    await repo.save_workflow(workflow)
    await repo.save_workflow(other)
    await repo.save_workflow(workflow.model_copy(update={"name": "renamed"}))

    names = [w.name for w in await repo.list_workflows()]
    assert names == ["renamed", "b"]


@pytest.mark.asyncio
async def test_run_lifecycle(repo):
    run = Run(workflow_id="wf", goal="ship")
    await repo.create_run(run)
    first = StepRun(run_id=run.id, step_id="s1")
    second = StepRun(run_id=run.id, step_id="s1", iteration=2)
    await repo.create_step_run(first)
    await repo.create_step_run(second)

    await repo.update_step_run_stdout(first.id, "partial")
    partial = (await repo.list_step_runs(run.id))[0]
    assert partial.stdout == "partial"
    assert partial.status == "running"

    await repo.finish_step_run(first.id, "success", "full", "err", "done")
    ended = utcnow()
    await repo.update_run_status(run.id, "success", ended)

    stored = await repo.get_run(run.id)
    assert stored.status == "success"
    assert stored.ended_at == ended

    step_runs = await repo.list_step_runs(run.id)
    assert [(s.step_id, s.iteration) for s in step_runs] == [("s1", 1), ("s1", 2)]
    assert (step_runs[0].status, step_runs[0].stdout, step_runs[0].stderr, step_runs[0].summary) == (
        "success",
        "full",
        "err",
        "done",
    )
    assert [r.id for r in await repo.list_runs()] == [run.id]


@pytest.mark.asyncio
async def test_settings(repo):
    assert await repo.get_setting("k") is None
    await repo.set_setting("k", "v1")
    await repo.set_setting("k", "v2")
    assert await repo.get_setting("k") == "v2"


@pytest.mark.asyncio
async def test_sqlite_data_survives_reopen(tmp_path):
    db_path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(db_path)
    run = Run(workflow_id="wf", goal="ship")
    await repo.create_run(run)

    reopened = SQLiteWorkflowRepository(db_path)
    assert (await reopened.get_run(run.id)).goal == "ship"


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    assert isinstance(get_repository("memory://"), InMemoryWorkflowRepository)

    repo = get_repository(f"sqlite://{tmp_path / 'data.db'}")
    assert isinstance(repo, SQLiteWorkflowRepository)
    assert get_repository() is repo

    with pytest.raises(ValueError):
        get_repository("postgres://nope")
