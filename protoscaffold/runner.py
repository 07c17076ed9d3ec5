"""External command execution.

Every subprocess a run starts (module init, protoc, dependency tidy, schema
bootstrap, project upgrade) goes through a ``CommandRunner`` so the pipeline
can be exercised with a fake that records invocations.
"""

from __future__ import annotations

import shlex
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from protoscaffold.errors import ToolchainError
from protoscaffold.utils import console, print_output, run_command


@runtime_checkable
class CommandRunner(Protocol):
    """The narrow capability the pipeline needs from the outside world."""

    async def run(self, cmd: str, cwd: Path) -> str:
        """Run *cmd* in *cwd* and return its stdout.

        Raises:
            ToolchainError: If the command exits non-zero.
        """
        ...

    def look_path(self, name: str) -> str | None:
        """Return the full path of executable *name*, or ``None``."""
        ...


class SubprocessRunner:
    """Runs commands through the shell and blocks until they finish.

    There is no timeout: a hung tool hangs the run.  Captured stdout/stderr
    are echoed for diagnostics only; the exit status is the sole success
    signal.
    """

    def __init__(self, echo: bool = True) -> None:
        self.echo = echo

    async def run(self, cmd: str, cwd: Path) -> str:
        if self.echo:
            console.print(f"  [cyan]$[/cyan] {cmd}", highlight=False)
        returncode, stdout, stderr = await run_command(cmd, cwd=cwd)
        if self.echo:
            print_output(stdout)
            print_output(stderr)
        if returncode != 0:
            raise ToolchainError(
                f"`{cmd}` exited with status {returncode}"
                + (f": {stderr}" if stderr else ""),
                cmd=cmd,
                returncode=returncode,
                stderr=stderr,
            )
        return stdout

    def look_path(self, name: str) -> str | None:
        return shutil.which(name)


def executable_of(cmd: str) -> str:
    """The program a command line starts, e.g. ``uv`` for ``uv lock``."""
    try:
        parts = shlex.split(cmd)
    except ValueError as exc:
        raise ToolchainError(f"cannot parse command line {cmd!r}: {exc}", cmd=cmd) from exc
    if not parts:
        raise ToolchainError("empty command line", cmd=cmd)
    return parts[0]


def require_tools(runner: CommandRunner, commands: list[str]) -> dict[str, str]:
    """Check that every program *commands* start is installed.

    Returns:
        Mapping of program name to resolved path.

    Raises:
        ToolchainError: Naming every missing program.
    """
    found: dict[str, str] = {}
    missing: list[str] = []
    for cmd in commands:
        program = executable_of(cmd)
        if program in found or program in missing:
            continue
        path = runner.look_path(program)
        if path:
            found[program] = path
        else:
            missing.append(program)
    if missing:
        raise ToolchainError(f"required tools not found on PATH: {', '.join(missing)}")
    return found
