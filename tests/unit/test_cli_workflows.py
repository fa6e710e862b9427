import asyncio

from typer.testing import CliRunner

import workflow_claw.persistence as persistence
from workflow_claw.cli import app
from workflow_claw.contracts import Folder, Run, StepRun, Workflow
from workflow_claw.persistence import InMemoryWorkflowRepository


def _setup_repo(monkeypatch) -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repo)
    return repo


def test_workflow_list(monkeypatch):
    repo = _setup_repo(monkeypatch)
    runner = CliRunner()

    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.output
    assert "No workflows found" in result.output

    folder = Folder(path="/work")
    asyncio.run(repo.save_workflow(Workflow(id="wf-1", name="review", folder_id=folder.id)))
    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.output
    assert "wf-1\treview\tsequential" in result.output


def test_run_list_and_show(monkeypatch):
    repo = _setup_repo(monkeypatch)
    run = Run(id="run-1", workflow_id="wf-1", goal="Ship it", status="failed")
    asyncio.run(repo.create_run(run))
    step_run = StepRun(run_id="run-1", step_id="plan", status="fail", summary="broke")
    asyncio.run(repo.create_step_run(step_run))
    runner = CliRunner()

    result = runner.invoke(app, ["run", "list"])
    assert result.exit_code == 0, result.output
    assert "run-1\twf-1\tfailed\tShip it" in result.output

    result = runner.invoke(app, ["run", "show", "run-1"])
    assert result.exit_code == 0, result.output
    assert "Run run-1: failed" in result.output
    assert "- plan #1: fail (broke)" in result.output

    result = runner.invoke(app, ["run", "show", "run-1", "--json"])
    assert result.exit_code == 0, result.output
    assert '"goal": "Ship it"' in result.output

    missing = runner.invoke(app, ["run", "show", "missing"])
    assert missing.exit_code == 1
    assert "Run not found" in missing.output


def test_vault_check(monkeypatch):
    _setup_repo(monkeypatch)
    runner = CliRunner()

    first = runner.invoke(app, ["vault", "check", "--passphrase", "pw"])
    assert first.exit_code == 0, first.output
    assert "Vault unlocked" in first.output

    wrong = runner.invoke(app, ["vault", "check", "--passphrase", "nope"])
    assert wrong.exit_code == 1
    assert "Invalid passphrase" in wrong.output


def test_run_unknown_workflow(monkeypatch):
    _setup_repo(monkeypatch)
    result = CliRunner().invoke(app, ["workflow", "run", "missing", "goal", "--fake"])
    assert result.exit_code == 1
    assert "Workflow missing not found" in result.output
