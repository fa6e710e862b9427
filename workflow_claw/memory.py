"""Project memory document: scanning, generation and loading."""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel

from .constants import MAX_SCAN_FILE_BYTES, MAX_SCAN_TOTAL_BYTES, MEMORY_STEP_NAME
from .contracts import Provider
from .runner import AgentCliRunner, CliRunRequest

logger = logging.getLogger(__name__)

MEMORY_FILE = "MEMORY.md"
CLAUDE_FILE = "CLAUDE.md"

DEFAULT_IGNORES = {
    ".git/",
    "node_modules/",
    "__pycache__/",
    ".venv/",
    "*.pyc",
    "PRDs/",
}


class ScannedFile(BaseModel):
    path: str
    content: str


def _load_gitignore_patterns(folder: Path) -> Set[str]:
    """Load patterns from the project's .gitignore plus the default ignores."""
    patterns: Set[str] = set(DEFAULT_IGNORES)
    gitignore_file = folder / ".gitignore"
    if gitignore_file.exists():
        try:
            for line in gitignore_file.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    patterns.add(line.lstrip("/"))
        except (OSError, UnicodeDecodeError):
            pass
    return patterns


def _should_ignore(relative: Path, is_dir: bool, patterns: Set[str]) -> bool:
    path_str = relative.as_posix()
    for pattern in patterns:
        if pattern.endswith("/"):
            if is_dir and (
                fnmatch.fnmatch(relative.name, pattern[:-1])
                or fnmatch.fnmatch(path_str, pattern[:-1])
            ):
                return True
            continue
        if fnmatch.fnmatch(relative.name, pattern) or fnmatch.fnmatch(path_str, pattern):
            return True
    return False


def _is_binary(data: bytes) -> bool:
    return b"\x00" in data


def _walk(folder: Path, patterns: Set[str]) -> Iterable[Path]:
    stack = [folder]
    while stack:
        current = stack.pop()
        try:
            entries = sorted(current.iterdir(), reverse=True)
        except OSError:
            continue
        for entry in entries:
            relative = entry.relative_to(folder)
            if entry.is_dir() and not entry.is_symlink():
                if not _should_ignore(relative, True, patterns):
                    stack.append(entry)
            elif entry.is_file() and not _should_ignore(relative, False, patterns):
                yield entry


def scan_project(folder_path: str | Path) -> List[ScannedFile]:
    """Collect text files from the project, honouring ``.gitignore``.

    Files over 200kB and binaries are skipped; scanning stops once 2MB of
    content has been gathered.
    """
    folder = Path(folder_path)
    patterns = _load_gitignore_patterns(folder)
    results: List[ScannedFile] = []
    total = 0
    for file_path in _walk(folder, patterns):
        if total >= MAX_SCAN_TOTAL_BYTES:
            break
        try:
            if file_path.stat().st_size > MAX_SCAN_FILE_BYTES:
                continue
            data = file_path.read_bytes()
        except OSError:
            continue
        if _is_binary(data):
            continue
        results.append(
            ScannedFile(
                path=file_path.relative_to(folder).as_posix(),
                content=data.decode("utf-8", errors="replace"),
            )
        )
        total += len(data)
    return results


def build_memory_prompt(files: List[ScannedFile]) -> str:
    body = "\n\n".join(f"# {f.path}\n\n{f.content}" for f in files)
    return (
        "You are analyzing a codebase to produce a concise MEMORY.md for future "
        "LLM agents.\n\nSummarize architecture, conventions, key paths, commands, "
        f"and guidelines. Keep it concise.\n\n{body}"
    )


def existing_memory_path(folder_path: str | Path) -> Optional[Path]:
    folder = Path(folder_path)
    for name in (MEMORY_FILE, CLAUDE_FILE):
        candidate = folder / name
        if candidate.exists():
            return candidate
    return None


def memory_path(folder_path: str | Path) -> Path:
    """Path of the memory document, preferring MEMORY.md."""
    return existing_memory_path(folder_path) or Path(folder_path) / MEMORY_FILE


def load_memory_text(folder_path: str | Path) -> str:
    path = existing_memory_path(folder_path)
    return path.read_text(encoding="utf-8") if path else ""


async def ensure_memory(
    runner: AgentCliRunner,
    provider: Provider,
    folder_path: str,
    env: Optional[Dict[str, str]] = None,
) -> bool:
    """Generate MEMORY.md with the provider's CLI when no memory exists.

    Returns ``True`` when a document was generated.
    """
    if existing_memory_path(folder_path) is not None:
        return False

    target = Path(folder_path) / MEMORY_FILE
    logger.info(f"Generating {target} with provider {provider.name}")
    prompt = build_memory_prompt(scan_project(folder_path))
    result = await runner.run(
        CliRunRequest(
            cli_command=provider.cli_command,
            template=provider.template,
            prompt=prompt,
            model=provider.default_model,
            cwd=folder_path,
            step_name=MEMORY_STEP_NAME,
            prd_path=str(Path(folder_path) / "PRDs"),
            memory_path=str(target),
            env=env or {},
        )
    )
    target.write_text(result.stdout, encoding="utf-8")
    return True
