"""Helper executables exchanging one JSON request/response over stdio."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict

from .contracts import SkillExecution
from .errors import ProtocolError, SpawnError

logger = logging.getLogger(__name__)


def skill_path(skills_dir: str | Path, name: str) -> Path:
    return Path(skills_dir) / name


def _parse_output(stdout: bytes) -> Any:
    try:
        return json.loads(stdout.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ProtocolError("Invalid JSON from skill") from exc


class SkillRunner:
    """Spawns a skill per call, writes the input as JSON, parses its reply."""

    def __init__(self, fake: bool = False) -> None:
        self.fake = fake

    async def run(
        self, skills_dir: str | Path, name: str, input: Dict[str, Any]
    ) -> SkillExecution:
        path = skill_path(skills_dir, name)
        if not path.is_file():
            return SkillExecution(name=name, status="fail", error=f"Skill not found: {name}")

        if self.fake:
            return SkillExecution(name=name, status="success", output={"skill": name})

        try:
            returncode, stdout, stderr = await self._communicate(path, input)
        except SpawnError as exc:
            logger.warning(f"Skill {name}: {exc}")
            return SkillExecution(name=name, status="fail", error=str(exc))

        if returncode != 0:
            message = stderr.decode("utf-8", errors="replace")
            logger.info(f"Skill {name} exited with {returncode}")
            return SkillExecution(name=name, status="fail", error=message or "Skill failed")

        try:
            output = _parse_output(stdout)
        except ProtocolError as exc:
            return SkillExecution(name=name, status="fail", error=str(exc))
        return SkillExecution(name=name, status="success", output=output)

    async def _communicate(self, path: Path, input: Dict[str, Any]):
        try:
            process = await asyncio.create_subprocess_exec(
                str(path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start skill '{path.name}'. {exc}") from exc

        payload = json.dumps(input, default=str).encode("utf-8")
        stdout, stderr = await process.communicate(payload)
        return process.returncode, stdout, stderr


async def run_skill(
    skills_dir: str | Path, name: str, input: Dict[str, Any], fake: bool = False
) -> SkillExecution:
    """Run a single skill; see :class:`SkillRunner`."""
    return await SkillRunner(fake=fake).run(skills_dir, name, input)

