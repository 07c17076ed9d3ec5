"""Project context resolution.

Finds the Python project that owns the output directory (the nearest
``pyproject.toml`` at or above it) and derives the dotted import path of the
output directory inside that project.
"""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from protoscaffold.errors import PathError

_IDENTIFIER_RE = re.compile(r"[^0-9a-zA-Z_]+")


class ProjectContext(BaseModel):
    """Resolved module layout shared read-only by every stage."""

    model_config = ConfigDict(frozen=True)

    module_name: str = Field(..., description="Distribution / module name")
    project_root: Path = Field(..., description="Directory holding pyproject.toml")
    work_dir: Path = Field(..., description="Output root of the generated service")
    import_path: str = Field(
        default="", description="Dotted path of work_dir relative to project_root"
    )
    style: Literal["snake", "flat"] = Field(default="snake")

    def package_for(self, *parts: str) -> str:
        """Dotted package path for *parts* below the work dir."""
        segments = [s for s in self.import_path.split(".") if s]
        segments.extend(p for p in parts if p)
        return ".".join(segments)


def find_pyproject(start: Path) -> Path | None:
    """Return the nearest ``pyproject.toml`` at or above *start*."""
    for directory in (start, *start.parents):
        candidate = directory / "pyproject.toml"
        if candidate.is_file():
            return candidate
    return None


def read_project_name(pyproject: Path) -> str:
    """Read ``[project].name`` (or ``[tool.poetry].name``) from *pyproject*.

    Raises:
        PathError: If the file cannot be read or decoded.
    """
    try:
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise PathError(f"cannot read {pyproject}: {exc}") from exc
    name = data.get("project", {}).get("name") or (
        data.get("tool", {}).get("poetry", {}).get("name")
    )
    return str(name or "")


def to_identifier(name: str) -> str:
    """Turn a distribution name into a Python identifier (``my-svc`` -> ``my_svc``)."""
    ident = _IDENTIFIER_RE.sub("_", name).strip("_").lower()
    if ident and ident[0].isdigit():
        ident = f"_{ident}"
    return ident


def resolve_project(
    work_dir: str | Path,
    module_name: str = "",
    style: Literal["snake", "flat"] = "snake",
) -> ProjectContext:
    """Resolve the ``ProjectContext`` for *work_dir*.

    Args:
        work_dir: Absolute output root of the service.
        module_name: Module name supplied on the command line.  When given,
            *work_dir* is its own project root and no ``pyproject.toml`` is
            consulted.  Otherwise the nearest ``pyproject.toml`` at or above
            *work_dir* names the project.
        style: File naming style carried along for the planner.

    Raises:
        PathError: If *work_dir* is not a directory, or no module name can be
            resolved.
    """
    work = Path(work_dir).expanduser().resolve()
    if not work.is_dir():
        raise PathError(f"{work} is not a directory")

    if module_name:
        return ProjectContext(
            module_name=module_name, project_root=work, work_dir=work, style=style
        )

    pyproject = find_pyproject(work)
    if pyproject is None:
        raise PathError(f"no pyproject.toml found at or above {work} and no module name given")

    root = pyproject.parent
    name = read_project_name(pyproject)
    if not name:
        raise PathError(f"{pyproject} declares no project name and no module name given")

    rel_parts = work.relative_to(root).parts
    import_path = ".".join(to_identifier(part) for part in rel_parts)
    return ProjectContext(
        module_name=name,
        project_root=root,
        work_dir=work,
        import_path=import_path,
        style=style,
    )
