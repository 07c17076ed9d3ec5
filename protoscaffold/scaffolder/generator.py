"""File emitters for the generated rpc service.

``ServiceGenerator`` owns one coroutine per generation target.  Each emitter
reads the directory plan, the service descriptor and the request, and
writes only under its planned directory.  Generated files are overwritten
on every run; directories and ``__init__.py`` files are created as needed.
"""

from __future__ import annotations

import asyncio
import re
import shlex
from pathlib import Path
from typing import Any

from protoscaffold.config import GenerationRequest
from protoscaffold.errors import GenerationError, PathError
from protoscaffold.planner import DirectoryContext, Target
from protoscaffold.proto.models import Rpc, Service, ServiceDescriptor
from protoscaffold.runner import CommandRunner
from protoscaffold.utils import ensure_dir
from protoscaffold.scaffolder.templates import TemplateRenderer


# ---------------------------------------------------------------------------
# Shared base messages written to desc/base.proto
# ---------------------------------------------------------------------------

BASE_MESSAGES: dict[str, str] = {
    "Empty": "message Empty {}",
    "IDReq": "message IDReq {\n  uint64 id = 1;\n}",
    "IDsReq": "message IDsReq {\n  repeated uint64 ids = 1;\n}",
    "UUIDReq": "message UUIDReq {\n  string id = 1;\n}",
    "UUIDsReq": "message UUIDsReq {\n  repeated string ids = 1;\n}",
    "BaseResp": "message BaseResp {\n  string msg = 1;\n}",
    "BaseIDResp": "message BaseIDResp {\n  uint64 id = 1;\n  string msg = 2;\n}",
    "BaseUUIDResp": "message BaseUUIDResp {\n  string id = 1;\n  string msg = 2;\n}",
    "PageInfoReq": "message PageInfoReq {\n  uint64 page = 1;\n  uint64 page_size = 2;\n}",
}

_PB_IMPORT_RE = re.compile(r"^import (\w+_pb2) as (\w+)$", re.MULTILINE)


class ServiceGenerator:
    """Renders every file of the rpc service skeleton."""

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    # -- Context building --------------------------------------------------

    def build_context(
        self,
        dir_ctx: DirectoryContext,
        proto: ServiceDescriptor,
        request: GenerationRequest,
    ) -> dict[str, Any]:
        """Build the Jinja2 template context shared by every emitter."""
        svc_file = dir_ctx.files_for(Target.SVC)[0]
        config_file = dir_ctx.files_for(Target.CONFIG)[0]
        return {
            "service_name": dir_ctx.service_name,
            "port": request.port,
            "i18n": request.i18n,
            "persistence": request.persistence,
            "multiple": request.multiple,
            "gen_client": request.gen_client,
            "style": request.style,
            "proto_module": proto.proto_name,
            "proto_file": _relative(proto.src, dir_ctx.work_dir),
            "pb_package": dir_ctx.get(Target.PB).package,
            "pb_dir": _relative(dir_ctx.get(Target.PB).path, dir_ctx.work_dir),
            "config_module": config_file.module,
            "svc_module": svc_file.module,
            "services": [self._service_context(dir_ctx, proto, s) for s in proto.services],
        }

    def _service_context(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, service: Service
    ) -> dict[str, Any]:
        logic = {f.rpc: f for f in dir_ctx.files_for(Target.LOGIC, service.name)}
        server = dir_ctx.file_for(Target.SERVER, service.name)
        client = None
        if dir_ctx.is_active(Target.CALL):
            client = dir_ctx.file_for(Target.CALL, service.name)
        rpcs = [
            {**_rpc_refs(proto, rpc), "module": logic[rpc.name].module, "path": logic[rpc.name].path}
            for rpc in service.rpcs
        ]
        return {
            "name": service.name,
            "rpcs": rpcs,
            "has_streaming": any(r.client_streaming or r.server_streaming for r in service.rpcs),
            "server_module": server.module,
            "server_path": server.path,
            "client_path": client.path if client else None,
        }

    # -- Core targets ------------------------------------------------------

    async def gen_etc(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write ``etc/<service>.yaml``."""
        ctx = self.build_context(dir_ctx, proto, request)
        target = dir_ctx.files_for(Target.ETC)[0].path
        return [await self.renderer.render_to_file("service/etc.yaml.j2", target, ctx)]

    async def gen_pb(
        self,
        dir_ctx: DirectoryContext,
        proto: ServiceDescriptor,
        request: GenerationRequest,
        runner: CommandRunner,
    ) -> list[Path]:
        """Compile the proto into protobuf/gRPC stubs under the pb directory.

        The stubs ``protoc`` emits import their sibling ``*_pb2`` modules
        absolutely; those imports are rewritten to package-relative ones.
        """
        pb_dir = dir_ctx.get(Target.PB).path
        await self._ensure_package(pb_dir, stop_at=dir_ctx.work_dir)

        roots = [proto.src.parent, *(Path(p) for p in request.proto_paths)]
        includes = " ".join(shlex.quote(f"-I{root}") for root in roots)
        cmd = request.toolchain.expand(
            "protoc",
            includes=includes,
            pb_dir=shlex.quote(str(pb_dir)),
            src=shlex.quote(str(proto.src)),
        )
        await runner.run(cmd, dir_ctx.work_dir)
        return await asyncio.to_thread(_fix_pb_imports, pb_dir)

    async def gen_config(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write the config loader."""
        return await self._render_planned(
            Target.CONFIG, "service/config.py.j2", dir_ctx, self.build_context(dir_ctx, proto, request)
        )

    async def gen_svc(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write the service context."""
        return await self._render_planned(
            Target.SVC, "service/service_context.py.j2", dir_ctx, self.build_context(dir_ctx, proto, request)
        )

    async def gen_logic(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write one business-logic stub per RPC."""
        ctx = self.build_context(dir_ctx, proto, request)
        written: list[Path] = []
        for service in ctx["services"]:
            for rpc in service["rpcs"]:
                await self._ensure_package(rpc["path"].parent, stop_at=dir_ctx.work_dir)
                written.append(
                    await self.renderer.render_to_file(
                        "service/logic.py.j2", rpc["path"], {**ctx, "service": service, "rpc": rpc}
                    )
                )
        return written

    async def gen_server(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write one gRPC servicer per service."""
        ctx = self.build_context(dir_ctx, proto, request)
        written: list[Path] = []
        for service in ctx["services"]:
            path = service["server_path"]
            await self._ensure_package(path.parent, stop_at=dir_ctx.work_dir)
            written.append(
                await self.renderer.render_to_file("service/server.py.j2", path, {**ctx, "service": service})
            )
        return written

    async def gen_main(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write the entry point."""
        target = dir_ctx.files_for(Target.MAIN)[0].path
        ctx = self.build_context(dir_ctx, proto, request)
        return [await self.renderer.render_to_file("service/main.py.j2", target, ctx)]

    async def gen_call(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write one client stub per service."""
        if not dir_ctx.is_active(Target.CALL):
            raise GenerationError("client generation is disabled for this run")
        ctx = self.build_context(dir_ctx, proto, request)
        await self._ensure_package(dir_ctx.get(Target.CALL).path, stop_at=dir_ctx.work_dir)
        written: list[Path] = []
        for service in ctx["services"]:
            written.append(
                await self.renderer.render_to_file(
                    "service/client.py.j2", service["client_path"], {**ctx, "service": service}
                )
            )
        return written

    # -- Auxiliary targets -------------------------------------------------

    async def gen_makefile(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Write the ``Makefile``."""
        ctx = self.build_context(dir_ctx, proto, request)
        return [
            await self.renderer.render_to_file("extra/Makefile.j2", dir_ctx.work_dir / "Makefile", ctx)
        ]

    async def gen_base_desc(
        self, dir_ctx: DirectoryContext, proto: ServiceDescriptor, request: GenerationRequest
    ) -> list[Path]:
        """Populate ``desc/`` with proto fragments.

        Writes ``base.proto`` with the shared base messages the service does
        not declare itself, and ``<service>.proto`` with the service's own
        declarations.  Existing fragments are never overwritten, so merging
        the directory on the next run reproduces the same proto.
        """
        desc_dir = dir_ctx.get(Target.DESC).path
        await asyncio.to_thread(ensure_dir, desc_dir)

        header = {
            "syntax": proto.syntax,
            "package": proto.package,
            "options": list(proto.options),
        }
        written: list[Path] = []

        base_path = desc_dir / "base.proto"
        base_messages = [text for name, text in BASE_MESSAGES.items() if not proto.has_type(name)]
        if not base_path.exists() and base_messages:
            written.append(
                await self.renderer.render_to_file(
                    "desc/base.proto.j2", base_path, {**header, "base_messages": base_messages}
                )
            )

        service_path = desc_dir / f"{dir_ctx.service_name.snake}.proto"
        if not service_path.exists() and service_path.resolve() != proto.src:
            written.append(
                await self.renderer.render_to_file(
                    "desc/service.proto.j2",
                    service_path,
                    {
                        **header,
                        "imports": list(proto.imports),
                        "declarations": [d.text.strip("\n") for d in proto.declarations],
                    },
                )
            )
        return written

    async def gen_gitignore(self, work_dir: Path) -> Path:
        """Write ``.gitignore`` with fixed contents."""
        return await self.renderer.render_to_file("extra/gitignore.j2", work_dir / ".gitignore", {})

    # -- Helpers -----------------------------------------------------------

    async def _render_planned(
        self, target: Target, template: str, dir_ctx: DirectoryContext, ctx: dict[str, Any]
    ) -> list[Path]:
        written: list[Path] = []
        for planned in dir_ctx.files_for(target):
            await self._ensure_package(planned.path.parent, stop_at=dir_ctx.work_dir)
            written.append(await self.renderer.render_to_file(template, planned.path, ctx))
        return written

    async def _ensure_package(self, directory: Path, stop_at: Path) -> None:
        """Create *directory* and an ``__init__.py`` in it and every parent below *stop_at*."""
        await asyncio.to_thread(_ensure_package_sync, directory, stop_at)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _rpc_refs(proto: ServiceDescriptor, rpc: Rpc) -> dict[str, Any]:
    """Template variables for *rpc*, resolving request/response type references."""
    request_ref, request_local = _type_ref(proto, rpc.request_type)
    response_ref, response_local = _type_ref(proto, rpc.response_type)
    return {
        "name": rpc.name,
        "request_type": rpc.request_type,
        "response_type": rpc.response_type,
        "client_streaming": rpc.client_streaming,
        "server_streaming": rpc.server_streaming,
        "request_ref": request_ref,
        "response_ref": response_ref,
        "request_local": request_local,
        "response_local": response_local,
    }


def _type_ref(proto: ServiceDescriptor, type_name: str) -> tuple[str, bool]:
    """Python annotation for *type_name* and whether it lives in the service's own pb module."""
    name = type_name.lstrip(".")
    if proto.package and name.startswith(f"{proto.package}."):
        name = name[len(proto.package) + 1 :]
    if "." not in name and proto.has_type(name):
        return f"pb.{name}", True
    return "object", False


def _relative(path: Path, base: Path) -> str:
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return path.as_posix()


def _ensure_package_sync(directory: Path, stop_at: Path) -> None:
    ensure_dir(directory)
    current = directory.resolve()
    root = stop_at.resolve()
    if current != root and root not in current.parents:
        raise PathError(f"{directory} is outside the output root {stop_at}")
    while current != root:
        init = current / "__init__.py"
        if not init.exists():
            init.write_text("", encoding="utf-8")
        current = current.parent


def _fix_pb_imports(pb_dir: Path) -> list[Path]:
    """Rewrite ``import x_pb2 as y`` to ``from . import x_pb2 as y`` for sibling modules."""
    if not pb_dir.is_dir():
        raise GenerationError(f"protoc produced no output directory at {pb_dir}")
    siblings = {p.stem for p in pb_dir.glob("*_pb2.py")}
    outputs = sorted(pb_dir.glob("*_pb2*.py"))
    for path in outputs:
        text = path.read_text(encoding="utf-8")
        fixed = _PB_IMPORT_RE.sub(
            lambda m: f"from . import {m.group(1)} as {m.group(2)}"
            if m.group(1) in siblings
            else m.group(0),
            text,
        )
        if fixed != text:
            path.write_text(fixed, encoding="utf-8")
    return outputs
