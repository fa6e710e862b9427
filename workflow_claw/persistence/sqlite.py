"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import Edge, Folder, Provider, Run, Step, StepRun, Workflow
from .repository import WorkflowRepository

SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS folders (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL,
    label TEXT
);
CREATE TABLE IF NOT EXISTS providers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    cli_command TEXT NOT NULL,
    template TEXT NOT NULL,
    default_model TEXT,
    env_enc TEXT
);
CREATE TABLE IF NOT EXISTS workflows (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    folder_id TEXT NOT NULL,
    execution_mode TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS steps (
    id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    provider_id TEXT NOT NULL,
    model TEXT,
    max_iterations INTEGER NOT NULL,
    skills_json TEXT NOT NULL,
    success_criteria TEXT,
    failure_criteria TEXT
);
CREATE TABLE IF NOT EXISTS edges (
    id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    from_step_id TEXT NOT NULL,
    to_step_id TEXT NOT NULL,
    type TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    goal TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT
);
CREATE TABLE IF NOT EXISTS step_runs (
    id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    step_id TEXT NOT NULL,
    iteration INTEGER NOT NULL,
    status TEXT NOT NULL,
    stdout TEXT,
    stderr TEXT,
    summary TEXT,
    created_at TEXT NOT NULL
);
"""


def _upsert(table: str, columns: list[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow definitions and run state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    async def _write(self, query: str, *params: Any) -> None:
        await asyncio.to_thread(self._execute, query, *params)

    async def _one(self, query: str, *params: Any) -> sqlite3.Row | None:
        return await asyncio.to_thread(self._fetchone, query, *params)

    async def _all(self, query: str, *params: Any) -> list[sqlite3.Row]:
        return await asyncio.to_thread(self._fetchall, query, *params)

    @staticmethod
    def _step(row: sqlite3.Row) -> Step:
        data = dict(row)
        data["skills"] = json.loads(data.pop("skills_json") or "[]")
        return Step(**data)

    @staticmethod
    def _step_run(row: sqlite3.Row) -> StepRun:
        data = dict(row)
        data["created_at"] = _dt(data["created_at"])
        return StepRun(**data)

    @staticmethod
    def _run(row: sqlite3.Row) -> Run:
        data = dict(row)
        data["started_at"] = _dt(data["started_at"])
        data["ended_at"] = _dt(data["ended_at"])
        return Run(**data)

    # ------------------------------------------------------------------
    # Definitions
    async def save_folder(self, folder: Folder) -> None:
        await self._write(
            _upsert("folders", ["id", "path", "label"]),
            folder.id,
            folder.path,
            folder.label,
        )

    async def save_provider(self, provider: Provider) -> None:
        await self._write(
            _upsert(
                "providers",
                ["id", "name", "cli_command", "template", "default_model", "env_enc"],
            ),
            provider.id,
            provider.name,
            provider.cli_command,
            provider.template,
            provider.default_model,
            provider.env_enc,
        )

    async def save_workflow(self, workflow: Workflow) -> None:
        await self._write(
            _upsert(
                "workflows", ["id", "name", "description", "folder_id", "execution_mode"]
            ),
            workflow.id,
            workflow.name,
            workflow.description,
            workflow.folder_id,
            workflow.execution_mode,
        )

    async def save_step(self, step: Step) -> None:
        await self._write(
            _upsert(
                "steps",
                [
                    "id",
                    "workflow_id",
                    "name",
                    "description",
                    "provider_id",
                    "model",
                    "max_iterations",
                    "skills_json",
                    "success_criteria",
                    "failure_criteria",
                ],
            ),
            step.id,
            step.workflow_id,
            step.name,
            step.description,
            step.provider_id,
            step.model,
            step.max_iterations,
            json.dumps(step.skills),
            step.success_criteria,
            step.failure_criteria,
        )

    async def save_edge(self, edge: Edge) -> None:
        await self._write(
            _upsert("edges", ["id", "workflow_id", "from_step_id", "to_step_id", "type"]),
            edge.id,
            edge.workflow_id,
            edge.from_step_id,
            edge.to_step_id,
            edge.type,
        )

    async def get_folder(self, folder_id: str) -> Folder | None:
        row = await self._one("SELECT * FROM folders WHERE id = ?", folder_id)
        return Folder(**dict(row)) if row else None

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await self._one("SELECT * FROM workflows WHERE id = ?", workflow_id)
        return Workflow(**dict(row)) if row else None

    async def list_workflows(self) -> list[Workflow]:
        rows = await self._all("SELECT * FROM workflows ORDER BY rowid")
        return [Workflow(**dict(r)) for r in rows]

    async def list_steps(self, workflow_id: str) -> list[Step]:
        rows = await self._all(
            "SELECT * FROM steps WHERE workflow_id = ? ORDER BY rowid", workflow_id
        )
        return [self._step(r) for r in rows]

    async def list_edges(self, workflow_id: str) -> list[Edge]:
        rows = await self._all(
            "SELECT * FROM edges WHERE workflow_id = ? ORDER BY rowid", workflow_id
        )
        return [Edge(**dict(r)) for r in rows]

    async def get_provider(self, provider_id: str) -> Provider | None:
        row = await self._one("SELECT * FROM providers WHERE id = ?", provider_id)
        return Provider(**dict(row)) if row else None

    # ------------------------------------------------------------------
    # Runs
    async def create_run(self, run: Run) -> None:
        await self._write(
            "INSERT INTO runs (id, workflow_id, goal, status, started_at, ended_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            run.id,
            run.workflow_id,
            run.goal,
            run.status,
            run.started_at.isoformat(),
            run.ended_at.isoformat() if run.ended_at else None,
        )

    async def update_run_status(
        self, run_id: str, status: str, ended_at: datetime | None = None
    ) -> None:
        await self._write(
            "UPDATE runs SET status = ?, ended_at = ? WHERE id = ?",
            status,
            ended_at.isoformat() if ended_at else None,
            run_id,
        )

    async def get_run(self, run_id: str) -> Run | None:
        row = await self._one("SELECT * FROM runs WHERE id = ?", run_id)
        return self._run(row) if row else None

    async def list_runs(self) -> list[Run]:
        rows = await self._all("SELECT * FROM runs ORDER BY started_at")
        return [self._run(r) for r in rows]

    async def create_step_run(self, step_run: StepRun) -> None:
        await self._write(
            "INSERT INTO step_runs (id, run_id, step_id, iteration, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            step_run.id,
            step_run.run_id,
            step_run.step_id,
            step_run.iteration,
            step_run.status,
            step_run.created_at.isoformat(),
        )

    async def update_step_run_stdout(self, step_run_id: str, stdout: str) -> None:
        await self._write(
            "UPDATE step_runs SET stdout = ? WHERE id = ?", stdout, step_run_id
        )

    async def finish_step_run(
        self,
        step_run_id: str,
        status: str,
        stdout: str,
        stderr: str,
        summary: str,
    ) -> None:
        await self._write(
            "UPDATE step_runs SET status = ?, stdout = ?, stderr = ?, summary = ? "
            "WHERE id = ?",
            status,
            stdout,
            stderr,
            summary,
            step_run_id,
        )

    async def list_step_runs(self, run_id: str) -> list[StepRun]:
        rows = await self._all(
            "SELECT * FROM step_runs WHERE run_id = ? ORDER BY rowid", run_id
        )
        return [self._step_run(r) for r in rows]

    # ------------------------------------------------------------------
    # Settings
    async def get_setting(self, key: str) -> str | None:
        row = await self._one("SELECT value FROM settings WHERE key = ?", key)
        return row["value"] if row else None

    async def set_setting(self, key: str, value: str) -> None:
        await self._write(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            key,
            value,
        )
