"""Agent CLI invocation attached to a pseudo-terminal."""

from __future__ import annotations

import asyncio
import codecs
import fcntl
import logging
import os
import pty
import re
import struct
import termios
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .config import CliConfig
from .constants import MEMORY_STEP_NAME, RULE_SELECT_SUFFIX
from .contracts import CliRunResult, StepOutput
from .errors import ResolutionError, SpawnError
from .templates import has_prompt_placeholder, render_template

logger = logging.getLogger(__name__)

OnData = Callable[[str], Awaitable[None]]

_TOKEN = re.compile(r"""[^\s"']+|"([^"]*)"|'([^']*)'""")
_READ_SIZE = 4096


class CliRunRequest(BaseModel):
    """Everything needed to invoke a provider's CLI once."""

    cli_command: str
    template: str
    prompt: str
    model: Optional[str] = None
    cwd: str
    step_name: str
    prd_path: str = ""
    memory_path: str = ""
    env: Dict[str, str] = Field(default_factory=dict)

    def template_fields(self) -> Dict[str, str]:
        return {
            "prompt": self.prompt,
            "model": self.model or "",
            "cwd": self.cwd,
            "stepName": self.step_name,
            "prdPath": self.prd_path,
            "memoryPath": self.memory_path,
        }


def split_command(command: str) -> List[str]:
    """Split ``command`` on whitespace keeping quoted substrings whole."""
    parts = []
    for match in _TOKEN.finditer(command):
        token = match.group(0)
        if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
            token = token[1:-1]
        parts.append(token)
    return parts


def build_command(cli_command: str, rendered_template: str) -> Tuple[str, List[str]]:
    """Combine the provider command with a rendered invocation template.

    When the rendered template already starts with the executable it is taken
    as the whole invocation; otherwise its tokens follow the base arguments.
    """
    cli_parts = split_command(cli_command)
    command = cli_parts[0] if cli_parts else ""
    base_args = cli_parts[1:]

    template_parts = split_command(rendered_template)
    if template_parts and template_parts[0] == command:
        return command, template_parts[1:]
    return command, base_args + template_parts


def build_search_path(env_path: Optional[str], fallback_bins: Sequence[str]) -> str:
    current = env_path if env_path is not None else os.environ.get("PATH", "")
    seen: List[str] = []
    for entry in [*current.split(os.pathsep), *fallback_bins]:
        if entry and entry not in seen:
            seen.append(entry)
    return os.pathsep.join(seen)


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def resolve_command(
    command: str,
    env_path: Optional[str] = None,
    fallback_bins: Sequence[str] = (),
) -> Optional[str]:
    """Return the absolute executable for ``command`` or ``None``."""
    if os.sep in command:
        return command if _is_executable(command) else None

    for directory in build_search_path(env_path, fallback_bins).split(os.pathsep):
        if not directory:
            continue
        candidate = os.path.join(directory, command)
        if _is_executable(candidate):
            return candidate
    return None


def build_environment(
    request: CliRunRequest, search_path: str, terminal_name: str
) -> Dict[str, str]:
    """Ambient env, then PATH and fixed fields, then provider variables."""
    env = dict(os.environ)
    env["TERM"] = terminal_name
    env["PATH"] = search_path
    env.update(
        {
            "PROMPT": request.prompt,
            "MODEL": request.model or "",
            "STEP_NAME": request.step_name,
            "PRD_PATH": request.prd_path,
            "MEMORY_PATH": request.memory_path,
            "WORKDIR": request.cwd,
        }
    )
    env.update(request.env)
    return env


def fake_result(step_name: str) -> CliRunResult:
    """Canned output keyed on step naming conventions, for tests."""
    if step_name.endswith(RULE_SELECT_SUFFIX):
        return CliRunResult(stdout="[]", exit_code=0)
    if step_name == MEMORY_STEP_NAME:
        return CliRunResult(stdout="# MEMORY\nFake memory", exit_code=0)

    lowered = step_name.lower()
    if "needs_input" in lowered or "needs-input" in lowered:
        output = StepOutput(status="needs_input", summary="fake run needs input")
    elif "fail" in lowered:
        output = StepOutput(status="fail", summary="fake failure")
    else:
        output = StepOutput(status="success", summary="fake run")
    return CliRunResult(stdout=output.model_dump_json(), exit_code=0)


class AgentCliRunner:
    """Runs provider CLIs inside a pseudo-terminal and streams their output."""

    def __init__(self, config: Optional[CliConfig] = None) -> None:
        self.config = config or CliConfig()

    @property
    def fake(self) -> bool:
        return self.config.fake

    async def run(
        self, request: CliRunRequest, on_data: Optional[OnData] = None
    ) -> CliRunResult:
        """Invoke the CLI described by ``request``.

        Never raises for resolution or spawn problems; those come back as a
        fail result whose stdout is a structured fail body.
        """
        if self.fake:
            result = fake_result(request.step_name)
            if on_data is not None:
                await on_data(result.stdout)
            return result

        rendered = render_template(request.template, request.template_fields())
        command, args = build_command(request.cli_command, rendered)
        if not command:
            return CliRunResult.failure("CLI command is empty.")

        env_path = request.env.get("PATH")
        try:
            executable = self._resolve(command, env_path)
            return await self._run_in_terminal(
                request, executable, args, env_path, on_data
            )
        except ResolutionError as exc:
            logger.warning(f"Step {request.step_name}: {exc}")
            return CliRunResult.failure(str(exc))
        except SpawnError as exc:
            logger.warning(f"Step {request.step_name}: {exc}")
            cause = str(exc.__cause__ or "")
            return CliRunResult.failure(str(exc), stderr=cause)

    def _resolve(self, command: str, env_path: Optional[str]) -> str:
        executable = resolve_command(command, env_path, self.config.fallback_bins)
        if executable is None:
            raise ResolutionError(
                f"CLI command '{command}' not found on PATH. Install it or set "
                "provider CLI to an absolute path."
            )
        logger.debug(f"Resolved CLI '{command}' to {executable}")
        return executable

    def _open_terminal(self) -> Tuple[int, int]:
        master_fd, slave_fd = pty.openpty()
        try:
            winsize = struct.pack(
                "HHHH", self.config.terminal_rows, self.config.terminal_cols, 0, 0
            )
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsize)
            # the prompt written to stdin must not come back as output
            attrs = termios.tcgetattr(slave_fd)
            attrs[3] &= ~termios.ECHO
            termios.tcsetattr(slave_fd, termios.TCSANOW, attrs)
        except (OSError, termios.error):
            os.close(master_fd)
            os.close(slave_fd)
            raise
        return master_fd, slave_fd

    async def _run_in_terminal(
        self,
        request: CliRunRequest,
        executable: str,
        args: List[str],
        env_path: Optional[str],
        on_data: Optional[OnData],
    ) -> CliRunResult:
        search_path = build_search_path(env_path, self.config.fallback_bins)
        env = build_environment(request, search_path, self.config.terminal_name)
        try:
            master_fd, slave_fd = self._open_terminal()
        except (OSError, termios.error) as exc:
            raise SpawnError(
                f"Failed to open a terminal for CLI '{os.path.basename(executable)}'. {exc}"
            ) from exc
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=request.cwd,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            os.close(master_fd)
            raise SpawnError(
                f"Failed to start CLI '{os.path.basename(executable)}'. {exc}".strip()
            ) from exc
        finally:
            os.close(slave_fd)

        logger.info(f"Started CLI for step {request.step_name} (pid={process.pid})")
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader),
            os.fdopen(master_fd, "rb", buffering=0),
        )
        try:
            if not has_prompt_placeholder(request.template):
                try:
                    await _write_terminal(master_fd, f"{request.prompt}\n".encode())
                except OSError as exc:
                    logger.warning(
                        f"Could not send prompt to CLI for step {request.step_name}: {exc}"
                    )
            stdout = await _drain(reader, on_data)
        finally:
            transport.close()

        exit_code = await process.wait()
        logger.info(f"CLI for step {request.step_name} exited with {exit_code}")
        return CliRunResult(stdout=stdout, stderr="", exit_code=exit_code)


async def _write_terminal(fd: int, data: bytes) -> None:
    # the master side is non-blocking once attached to the event loop
    view = memoryview(data)
    while view:
        try:
            written = os.write(fd, view)
        except BlockingIOError:
            await asyncio.sleep(0.01)
            continue
        view = view[written:]


async def _drain(reader: asyncio.StreamReader, on_data: Optional[OnData]) -> str:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    chunks: List[str] = []
    while True:
        try:
            data = await reader.read(_READ_SIZE)
        except OSError:
            # EIO: every holder of the terminal's child side has exited
            break
        if not data:
            break
        text = decoder.decode(data)
        if text:
            chunks.append(text)
            if on_data is not None:
                await on_data(text)
    tail = decoder.decode(b"", final=True)
    if tail:
        chunks.append(tail)
        if on_data is not None:
            await on_data(tail)
    return "".join(chunks)

