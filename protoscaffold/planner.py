"""Directory planning.

``plan_directories`` maps every logical generation target (etc, config,
logic, svc, server, main, call, pb, desc) to a concrete directory and lists
every file the generation stages will write.  It is a pure function of its
inputs: nothing here touches the file system.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from protoscaffold.config import GenerationRequest
from protoscaffold.project import ProjectContext
from protoscaffold.proto.models import Service, ServiceDescriptor


# ---------------------------------------------------------------------------
# Case conversion
# ---------------------------------------------------------------------------

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def split_words(name: str) -> list[str]:
    """Split *name* on ``_``, ``-``, ``.``, whitespace and camel-case boundaries.

    Examples::

        split_words("user_center")   -> ["user", "center"]
        split_words("user-center")   -> ["user", "center"]
        split_words("SayHello")      -> ["Say", "Hello"]
        split_words("HTTPServer")    -> ["HTTP", "Server"]
    """
    words: list[str] = []
    for chunk in re.split(r"[-_.\s]+", name):
        if chunk:
            words.extend(w for w in _CAMEL_BOUNDARY_RE.split(chunk) if w)
    return words


def to_camel(name: str) -> str:
    """``user_center`` / ``user-center`` -> ``UserCenter``."""
    return "".join(w[:1].upper() + w[1:] for w in split_words(name))


def to_snake(name: str) -> str:
    """``UserCenter`` / ``user-center`` -> ``user_center``."""
    return "_".join(w.lower() for w in split_words(name))


def to_lower_camel(name: str) -> str:
    """``user_center`` -> ``userCenter``."""
    camel = to_camel(name)
    return camel[:1].lower() + camel[1:]


class ServiceName(BaseModel):
    """A name together with its case conventions."""

    model_config = ConfigDict(frozen=True)

    source: str

    @property
    def camel(self) -> str:
        return to_camel(self.source)

    @property
    def snake(self) -> str:
        return to_snake(self.source)

    @property
    def lower(self) -> str:
        """All-lowercase, separator-free form, e.g. ``usercenter``."""
        return self.camel.lower()

    def __str__(self) -> str:
        return self.source


# ---------------------------------------------------------------------------
# Plan model
# ---------------------------------------------------------------------------

class Target(str, Enum):
    """Logical generation targets, in generation order."""
    ETC = "etc"
    PB = "pb"
    CONFIG = "config"
    SVC = "svc"
    LOGIC = "logic"
    SERVER = "server"
    MAIN = "main"
    CALL = "call"
    DESC = "desc"


class Dir(BaseModel):
    """Where a target lives."""
    model_config = ConfigDict(frozen=True)

    target: Target
    path: Path = Field(..., description="Absolute directory")
    package: str = Field(default="", description="Dotted import path of the directory")
    active: bool = Field(default=True, description="Whether this run populates the target")


class PlannedFile(BaseModel):
    """One file a generation stage will write."""
    model_config = ConfigDict(frozen=True)

    target: Target
    path: Path
    module: str = Field(default="", description="Dotted module path for Python files")
    service: str = Field(default="", description="Owning proto service, if any")
    rpc: str = Field(default="", description="Owning RPC, for logic stubs")


class DirectoryContext(BaseModel):
    """The directory plan consumed by every generation stage."""
    model_config = ConfigDict(frozen=True)

    work_dir: Path
    service_name: ServiceName
    multiple: bool = False
    dirs: dict[Target, Dir]
    files: tuple[PlannedFile, ...] = ()

    def get(self, target: Target) -> Dir:
        return self.dirs[target]

    def is_active(self, target: Target) -> bool:
        return self.dirs[target].active

    def files_for(
        self, target: Target, service: str | None = None
    ) -> list[PlannedFile]:
        """Planned files of *target*, optionally restricted to one *service*."""
        return [
            f
            for f in self.files
            if f.target is target and (service is None or f.service == service)
        ]

    def file_for(self, target: Target, service: str = "", rpc: str = "") -> PlannedFile:
        """The single planned file matching *target*, *service* and *rpc*."""
        for f in self.files:
            if f.target is target and f.service == service and f.rpc == rpc:
                return f
        raise KeyError(f"no planned {target.value} file for {service or '-'}/{rpc or '-'}")


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

def module_file_name(name: str, style: str, suffix: str = "") -> str:
    """File stem for a generated module following the naming *style*.

    ``snake`` keeps underscores (``say_hello_logic``); ``flat`` drops them
    (``sayhellologic``).
    """
    stem = to_snake(f"{name}_{suffix}" if suffix else name)
    return stem.replace("_", "") if style == "flat" else stem


def plan_directories(
    project: ProjectContext,
    descriptor: ServiceDescriptor,
    request: GenerationRequest,
) -> DirectoryContext:
    """Compute the ``DirectoryContext`` for one run."""
    service_name = ServiceName(source=request.service_name or descriptor.proto_name)
    snake = service_name.snake
    style = project.style
    work = project.work_dir

    pb_leaf = descriptor.package.replace(".", "_") if descriptor.package else snake

    def make(target: Target, *parts: str, active: bool = True) -> Dir:
        return Dir(
            target=target,
            path=work.joinpath(*parts),
            package=project.package_for(*parts),
            active=active,
        )

    dirs = {
        Target.ETC: make(Target.ETC, "etc"),
        Target.PB: make(Target.PB, "pb", pb_leaf),
        Target.CONFIG: make(Target.CONFIG, "internal", "config"),
        Target.SVC: make(Target.SVC, "internal", "svc"),
        Target.LOGIC: make(Target.LOGIC, "internal", "logic"),
        Target.SERVER: make(Target.SERVER, "internal", "server"),
        Target.MAIN: make(Target.MAIN),
        Target.CALL: make(Target.CALL, f"{snake.replace('_', '')}client", active=request.gen_client),
        Target.DESC: make(Target.DESC, "desc", active=request.use_desc_dir),
    }

    files: list[PlannedFile] = []

    def add(target: Target, file_stem: str, ext: str = ".py", *, sub: str = "", **owner: str) -> None:
        base = dirs[target]
        parts = [sub] if sub else []
        path = base.path.joinpath(*parts, f"{file_stem}{ext}")
        module = ""
        if ext == ".py":
            module = ".".join(p for p in (base.package, sub, file_stem) if p)
        files.append(PlannedFile(target=target, path=path, module=module, **owner))

    add(Target.ETC, snake, ".yaml")
    add(Target.CONFIG, "config")
    add(Target.SVC, module_file_name("service_context", style))

    for service in descriptor.services:
        sub = _service_sub(service, request.multiple)
        for rpc in service.rpcs:
            add(
                Target.LOGIC,
                module_file_name(rpc.name, style, "logic"),
                sub=sub,
                service=service.name,
                rpc=rpc.name,
            )
        add(
            Target.SERVER,
            module_file_name(service.name, style, "server"),
            sub=sub,
            service=service.name,
        )

    add(Target.MAIN, snake)

    if request.gen_client:
        for service in descriptor.services:
            add(Target.CALL, module_file_name(service.name, style, "client"), service=service.name)

    return DirectoryContext(
        work_dir=work,
        service_name=service_name,
        multiple=request.multiple,
        dirs=dirs,
        files=tuple(files),
    )


def _service_sub(service: Service, multiple: bool) -> str:
    """Per-service subdirectory for logic/server files in multiple mode."""
    return module_file_name(service.name, "flat") if multiple else ""
