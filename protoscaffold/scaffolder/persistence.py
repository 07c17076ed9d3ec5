"""Persistence-layer scaffolding (SQLAlchemy + Alembic).

Every step is idempotent on its own: the migration environment is only
bootstrapped when it does not exist yet, generated modules are overwritten,
and the init code is only inserted once.  Any failure is raised as
``PersistenceBootstrapError`` with the original exception chained.
"""

from __future__ import annotations

import asyncio
import re
import shlex
from pathlib import Path

from protoscaffold.config import GenerationRequest
from protoscaffold.errors import GenerationError, PersistenceBootstrapError, ScaffoldError
from protoscaffold.planner import DirectoryContext, Target
from protoscaffold.runner import CommandRunner
from protoscaffold.utils import print_warning
from protoscaffold.scaffolder.templates import TemplateRenderer

_INIT_REGION_RE = re.compile(
    r"^[ \t]*# region persistence-init\n.*?^[ \t]*# endregion persistence-init\n",
    re.MULTILINE | re.DOTALL,
)

# Modules rendered into the schema package: template -> file name.
_CODEGEN_FILES: dict[str, str] = {
    "persistence/session.py.j2": "session.py",
    "persistence/pagination.py.j2": "pagination.py",
    "persistence/set_not_nil.py.j2": "set_not_nil.py",
}

# Placeholder files the schema tool drops that the service does not need.
_FIXTURES: tuple[str, ...] = ("README",)


class PersistenceGenerator:
    """Scaffolds the data-access layer of the generated service."""

    def __init__(self, renderer: TemplateRenderer) -> None:
        self.renderer = renderer

    # -- Paths -------------------------------------------------------------

    @staticmethod
    def schema_dir(dir_ctx: DirectoryContext, request: GenerationRequest) -> Path:
        return dir_ctx.work_dir / request.schema_path

    @classmethod
    def migrations_dir(cls, dir_ctx: DirectoryContext, request: GenerationRequest) -> Path:
        return cls.schema_dir(dir_ctx, request) / "migrations"

    @staticmethod
    def error_handler_path(dir_ctx: DirectoryContext) -> Path:
        return dir_ctx.work_dir / "internal" / "utils" / "dberrorhandler" / "error_handler.py"

    @staticmethod
    def tx_path(dir_ctx: DirectoryContext) -> Path:
        return dir_ctx.work_dir / "internal" / "utils" / "dbtx" / "tx.py"

    # -- Subprocess steps --------------------------------------------------

    async def schema_init(
        self, dir_ctx: DirectoryContext, request: GenerationRequest, runner: CommandRunner
    ) -> bool:
        """Bootstrap the migration environment.

        Returns:
            ``False`` when the environment already exists and nothing ran.
        """
        migrations = self.migrations_dir(dir_ctx, request)
        if (migrations / "env.py").exists():
            return False
        migrations.parent.mkdir(parents=True, exist_ok=True)
        rel = migrations.relative_to(dir_ctx.work_dir).as_posix()
        cmd = request.toolchain.expand("schema_init", migrations_dir=shlex.quote(rel))
        await self._run(runner, cmd, dir_ctx.work_dir)
        return True

    async def tidy(
        self, dir_ctx: DirectoryContext, request: GenerationRequest, runner: CommandRunner
    ) -> None:
        """Resolve dependencies after the data layer changed."""
        await self._run(runner, request.toolchain.expand("tidy"), dir_ctx.work_dir)

    # -- Code generation ---------------------------------------------------

    async def codegen(
        self, dir_ctx: DirectoryContext, request: GenerationRequest
    ) -> list[Path]:
        """Render the schema package: declarative base, session, helpers."""
        schema = self.schema_dir(dir_ctx, request)
        context = {"service_name": dir_ctx.service_name}
        written: list[Path] = []
        try:
            await asyncio.to_thread(_touch_init, schema)
            await asyncio.to_thread(_touch_init, schema / "schema")
            written.append(
                await self.renderer.render_to_file(
                    "persistence/schema.py.j2", schema / "schema" / "base.py", context
                )
            )
            for template, name in _CODEGEN_FILES.items():
                written.append(await self.renderer.render_to_file(template, schema / name, context))
        except (GenerationError, OSError) as exc:
            raise PersistenceBootstrapError(f"schema code generation failed: {exc}") from exc
        return written

    async def fixture_cleanup(
        self, dir_ctx: DirectoryContext, request: GenerationRequest
    ) -> list[Path]:
        """Remove placeholder files left by the schema bootstrap."""
        removed: list[Path] = []
        migrations = self.migrations_dir(dir_ctx, request)
        for name in _FIXTURES:
            path = migrations / name
            try:
                if path.is_file():
                    path.unlink()
                    removed.append(path)
            except OSError as exc:
                raise PersistenceBootstrapError(f"cannot remove {path}: {exc}") from exc
        return removed

    async def gen_error_handler(self, dir_ctx: DirectoryContext) -> Path:
        """Write the database error handler."""
        return await self._render_module(
            "persistence/error_handler.py.j2", self.error_handler_path(dir_ctx), dir_ctx
        )

    async def gen_tx(self, dir_ctx: DirectoryContext) -> Path:
        """Write the transaction helper."""
        return await self._render_module("persistence/tx.py.j2", self.tx_path(dir_ctx), dir_ctx)

    async def gen_init_code(
        self, dir_ctx: DirectoryContext, request: GenerationRequest, package_root: str
    ) -> Path | None:
        """Insert database initialisation into the generated service context.

        The code goes between the ``persistence-init`` region markers the svc
        template leaves; re-running replaces the region instead of appending.

        Args:
            package_root: Dotted package of the output root ("" at project root).

        Returns:
            The patched file, or ``None`` when persistence is disabled.
        """
        if not request.persistence:
            print_warning("  persistence disabled, no database init code to add")
            return None

        svc_path = dir_ctx.files_for(Target.SVC)[0].path
        session_module = ".".join(
            p for p in (package_root, *Path(request.schema_path).parts, "session") if p
        )
        snippet = self.renderer.render(
            "persistence/init_code.py.j2", {"session_module": session_module}
        )
        try:
            source = svc_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceBootstrapError(f"cannot read {svc_path}: {exc}") from exc

        patched, count = _INIT_REGION_RE.subn(lambda _: snippet, source, count=1)
        if count == 0:
            raise PersistenceBootstrapError(
                f"{svc_path} has no persistence-init region to fill"
            )
        if patched != source:
            svc_path.write_text(patched, encoding="utf-8")
        return svc_path

    # -- Helpers -----------------------------------------------------------

    async def _run(self, runner: CommandRunner, cmd: str, cwd: Path) -> str:
        try:
            return await runner.run(cmd, cwd)
        except ScaffoldError as exc:
            raise PersistenceBootstrapError(f"`{cmd}` failed: {exc}") from exc

    async def _render_module(self, template: str, path: Path, dir_ctx: DirectoryContext) -> Path:
        try:
            current = path.parent
            while current != dir_ctx.work_dir and dir_ctx.work_dir in current.parents:
                await asyncio.to_thread(_touch_init, current)
                current = current.parent
            return await self.renderer.render_to_file(
                template, path, {"service_name": dir_ctx.service_name}
            )
        except (GenerationError, OSError) as exc:
            raise PersistenceBootstrapError(f"cannot generate {path.name}: {exc}") from exc


def _touch_init(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    init = directory / "__init__.py"
    if not init.exists():
        init.write_text("", encoding="utf-8")
