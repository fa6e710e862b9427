"""The per-goal PRD document that collects every step's reported outcome."""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from pathlib import Path
from typing import List, Optional

from .contracts import StepOutput
from .locks import ResourceSerializer

PRD_DIR = "PRDs"
UPDATES_HEADER = "## Agent Updates"
MAX_SLUG = 60


def slugify(text: str, max_length: int = MAX_SLUG) -> str:
    """Lower-case ASCII slug of ``text`` with hyphens between words."""
    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode()
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug[:max_length] or "workflow"


def prd_path(folder_path: str | Path, goal: str, today: Optional[date] = None) -> Path:
    """``<folder>/PRDs/<date>_<slug>.md``; the PRDs directory is created."""
    prd_dir = Path(folder_path) / PRD_DIR
    prd_dir.mkdir(parents=True, exist_ok=True)
    today = today or date.today()
    return prd_dir / f"{today.isoformat()}_{slugify(goal)}.md"


def ensure_prd(path: Path, goal: str) -> bool:
    if path.exists():
        return False
    path.write_text(f"# PRD\n\nGoal: {goal}\n", encoding="utf-8")
    return True


def _joined(items: List[str]) -> str:
    return ", ".join(items) or "none"


def format_entry(step_name: str, output: StepOutput) -> str:
    return (
        f"\n### {step_name}\n"
        f"- Status: {output.status}\n"
        f"- Summary: {output.summary}\n"
        f"- Files: {_joined(output.files_modified)}\n"
        f"- Checks: {_joined(output.checks)}\n"
        f"- Next: {_joined(output.next_actions)}\n"
    )


def _append(path: Path, entry: str) -> None:
    prd = path.read_text(encoding="utf-8") if path.exists() else ""
    if UPDATES_HEADER not in prd:
        prd = f"{prd.strip()}\n\n{UPDATES_HEADER}\n"
    path.write_text(f"{prd.strip()}\n{entry}", encoding="utf-8")


async def append_agent_update(
    serializer: ResourceSerializer, path: Path, step_name: str, output: StepOutput
) -> None:
    """Append ``output`` under the Agent Updates section, serialized per path."""
    entry = format_entry(step_name, output)
    await serializer.with_lock(str(path), lambda: _append(path, entry))
