"""Shared utility functions for protoscaffold.

Provides async command execution, file-system helpers (including an atomic
text writer), duration formatting and Rich-based console reporting.
"""

from __future__ import annotations

import asyncio
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, Iterable

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from protoscaffold.errors import PathError

console = Console()


def _read_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


_UMASK = _read_umask()

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


async def run_command(cmd: str, cwd: str | Path | None = None) -> tuple[int, str, str]:
    """Run a shell command asynchronously and wait for it to finish.

    There is no timeout: the call returns only when the process exits.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple.
    """
    process = await asyncio.create_subprocess_shell(
        cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
    )
    stdout_bytes, stderr_bytes = await process.communicate()

    stdout_str = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return (process.returncode or 0, stdout_str, stderr_str)


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents) if it does not exist.

    A pre-existing directory is not an error.

    Raises:
        PathError: If the path exists but is not a directory, or cannot be
            created.
    """
    dir_path = Path(path)
    try:
        dir_path.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError) as exc:
        raise PathError(f"{dir_path} exists and is not a directory") from exc
    except OSError as exc:
        raise PathError(f"cannot create {dir_path}: {exc}") from exc
    return dir_path.resolve()


def write_text_atomic(path: str | Path, content: str) -> Path:
    """Write *content* to *path* through a temporary file and ``os.replace``.

    The temporary file lives in the destination directory so the final
    rename never crosses a filesystem.  An existing file keeps its
    permissions; a new one gets the usual umask-filtered ``0o666``.  On
    failure the temporary file is removed and the destination is left
    untouched.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(content)
        os.chmod(tmp_name, _file_mode(target))
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target


def _file_mode(target: Path) -> int:
    try:
        return stat.S_IMODE(target.stat().st_mode)
    except FileNotFoundError:
        return 0o666 & ~_UMASK


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_header(title: str, color: str = "bright_green") -> None:
    """Print a full-width rule with *title*."""
    console.print(Rule(f"[bold {color}] {title} [/bold {color}]", style=color))


def print_stage(name: str, status: str, detail: str = "") -> None:
    """Print a one-line stage outcome."""
    marks = {
        "ok": "[green]+[/green]",
        "skipped": "[dim]-[/dim]",
        "failed": "[red]x[/red]",
    }
    suffix = f" [dim]({detail})[/dim]" if detail else ""
    console.print(f"  {marks.get(status, '?')} {name}{suffix}")


def print_results_table(rows: Iterable[Any], title: str = "Stages") -> None:
    """Print a table of stage results.

    Each row must expose ``name``, ``status`` and ``elapsed`` attributes.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Stage", style="dim", no_wrap=True)
    table.add_column("Status")
    table.add_column("Time", justify="right")

    styles = {"ok": "green", "skipped": "dim", "failed": "bold red"}
    for row in rows:
        status = str(row.status)
        style = styles.get(status, "white")
        table.add_row(row.name, f"[{style}]{status}[/{style}]", format_duration(row.elapsed))

    console.print(table)


def print_output(text: str) -> None:
    """Echo captured subprocess output, dimmed."""
    if text:
        console.print(f"[dim]{text}[/dim]", highlight=False)


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
