"""Command line interface for loading and running workflow-claw workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from workflow_claw import SecretVault, WorkflowEngine, get_repository
from workflow_claw.cli_utils.definitions import load_definition, save_definition
from workflow_claw.config import load_config
from workflow_claw.contracts import RunDetails
from workflow_claw.errors import ConfigurationError, VaultError
from workflow_claw.persistence import WorkflowRepository
from workflow_claw.vault import decrypt_provider_env

app = typer.Typer(help="CLI for workflow-claw workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for defining and running workflows")
run_app = typer.Typer(help="Commands for inspecting runs")
vault_app = typer.Typer(help="Commands for the secret vault")
provider_app = typer.Typer(help="Commands for agent CLI providers")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")
app.add_typer(vault_app, name="vault")
app.add_typer(provider_app, name="provider")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """workflow-claw CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _unlock(repo: WorkflowRepository, passphrase: str) -> SecretVault:
    vault = SecretVault(repo, load_config().vault)
    try:
        unlocked = asyncio.run(vault.unlock(passphrase))
    except VaultError as exc:
        _fail(str(exc))
    if not unlocked:
        _fail("Invalid passphrase")
    return vault


@workflow_app.command("load")
def workflow_load(
    path: Path,
    passphrase: Optional[str] = typer.Option(
        None, help="Vault passphrase, required when providers declare env values"
    ),
) -> None:
    """
    Store the folder, providers, workflow, steps and edges from a YAML file.

    Provider ``env`` values are encrypted with the vault before they are
    written, so a passphrase is needed whenever a provider declares one.

    Example:
        workflow-claw workflow load ./review.yaml --passphrase secret
    """
    if not path.exists():
        _fail("Specified path does not exist")
    try:
        definition = load_definition(path)
    except ValidationError as exc:
        _fail(f"Invalid workflow file: {exc}")

    repo = get_repository()
    vault = _unlock(repo, passphrase) if passphrase else None
    try:
        workflow = asyncio.run(save_definition(definition, repo, vault))
    except VaultError as exc:
        _fail(f"{exc}. Pass --passphrase to store provider env values.")
    typer.echo(f"Loaded workflow {workflow.name}: {workflow.id}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List stored workflows with their execution mode."""
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{wf.execution_mode}")


@workflow_app.command("run")
def workflow_run(
    workflow_id: str,
    goal: str,
    passphrase: Optional[str] = typer.Option(
        None, help="Vault passphrase used to decrypt provider env values"
    ),
    fake: bool = typer.Option(False, help="Use canned agent output instead of real CLIs"),
) -> None:
    """
    Execute a workflow once for GOAL.

    Without a passphrase the vault stays locked and providers run without
    their stored environment.

    Example:
        workflow-claw workflow run 1f0c... "Add a health endpoint"
    """
    repo = get_repository()
    config = load_config()
    if fake:
        config.cli.fake = True
    vault = _unlock(repo, passphrase) if passphrase else None
    engine = WorkflowEngine(repo, vault=vault, config=config)
    try:
        run_id = asyncio.run(engine.execute_workflow(workflow_id, goal))
    except ConfigurationError as exc:
        _fail(str(exc))
    run = asyncio.run(repo.get_run(run_id))
    typer.echo(f"Run {run_id}: {run.status if run else 'unknown'}")


@run_app.command("list")
def run_list() -> None:
    """List runs with their workflow, status and goal."""
    repo = get_repository()
    runs = asyncio.run(repo.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.workflow_id}\t{run.status}\t{run.goal}")


@run_app.command("show")
def run_show(
    run_id: str,
    as_json: bool = typer.Option(False, "--json", help="Print the run as JSON"),
) -> None:
    """Show a run and each of its step runs."""
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    step_runs = asyncio.run(repo.list_step_runs(run_id))
    if as_json:
        typer.echo(RunDetails(run=run, steps=step_runs).to_json())
        return
    typer.echo(f"Run {run.id}: {run.status}")
    typer.echo(f"Goal: {run.goal}")
    for step_run in step_runs:
        typer.echo(
            f"- {step_run.step_id} #{step_run.iteration}: {step_run.status}"
            + (f" ({step_run.summary})" if step_run.summary else "")
        )


@vault_app.command("check")
def vault_check(
    passphrase: str = typer.Option(..., prompt=True, hide_input=True),
) -> None:
    """Verify the passphrase, initialising the vault on first use."""
    repo = get_repository()
    _unlock(repo, passphrase)
    typer.echo("Vault unlocked")


@provider_app.command("env")
def provider_env(
    provider_id: str,
    passphrase: str = typer.Option(..., prompt=True, hide_input=True),
) -> None:
    """Print a provider's decrypted environment as KEY=VALUE lines."""
    repo = get_repository()
    provider = asyncio.run(repo.get_provider(provider_id))
    if provider is None:
        typer.echo("Provider not found")
        raise typer.Exit(code=1)
    vault = _unlock(repo, passphrase)
    try:
        env = decrypt_provider_env(vault, provider.env_enc)
    except VaultError as exc:
        _fail(str(exc))
    if not env:
        typer.echo("No environment stored")
        return
    for key, value in sorted(env.items()):
        typer.echo(f"{key}={value}")


if __name__ == "__main__":
    app()
