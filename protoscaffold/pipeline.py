"""protoscaffold generation pipeline.

Scaffolds a gRPC microservice from a ``.proto`` file in a fixed sequence of
stages:

1. Prepare   -- create the output root, merge ``desc/`` fragments, check the
   toolchain, resolve the project, parse the proto, plan directories.
2. Generate  -- etc, pb, config, svc, logic, server, main and client files.
3. Extras    -- Makefile, Dockerfile, ``desc/`` fragments, the persistence
   layer, new-project upgrade and ``.gitignore``, each behind its flag.

Stages run strictly one after another.  The first failing stage stops the
run with a ``StageError`` naming it; nothing is retried or rolled back.

Usage::

    python -m protoscaffold.pipeline greeter.proto --output ./greeter
    python -m protoscaffold.pipeline greeter.proto -o ./greeter --persistence --dockerfile
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field, ValidationError

from protoscaffold.config import GenerationRequest, ToolchainConfig
from protoscaffold.errors import GenerationError, ScaffoldError, StageError
from protoscaffold.planner import DirectoryContext, plan_directories
from protoscaffold.project import ProjectContext, resolve_project
from protoscaffold.proto import ProtoContext, ProtoParser, ServiceDescriptor, merge_proto
from protoscaffold.runner import CommandRunner, SubprocessRunner, require_tools
from protoscaffold.scaffolder import (
    DockerGenerator,
    PersistenceGenerator,
    ServiceGenerator,
    TemplateRenderer,
)
from protoscaffold.utils import (
    console,
    ensure_dir,
    print_error,
    print_header,
    print_results_table,
    print_stage,
    print_success,
)

# ---------------------------------------------------------------------------
# Stage model
# ---------------------------------------------------------------------------

StageStatus = Literal["ok", "skipped", "failed"]


class StageResult(BaseModel):
    """Outcome of one executed stage."""

    name: str
    status: StageStatus
    elapsed: float = Field(default=0.0, description="Wall-clock seconds")
    detail: str = ""


@dataclass(frozen=True)
class Skip:
    """Returned by a stage that decided at run time it has nothing to do."""

    reason: str


StageFn = Callable[["RunContext"], Awaitable[Any]]


@dataclass(frozen=True)
class Stage:
    name: str
    run: StageFn


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------


@dataclass
class RunContext:
    """State shared by the stages of one run.

    ``project``, ``descriptor`` and ``dirs`` are filled in by the
    resolve-project, parse-proto and plan-directories stages.  Reading one
    before its stage ran raises ``GenerationError``.
    """

    request: GenerationRequest
    runner: CommandRunner
    renderer: TemplateRenderer
    services: ServiceGenerator = field(init=False)
    docker: DockerGenerator = field(init=False)
    persistence: PersistenceGenerator = field(init=False)
    _project: ProjectContext | None = field(default=None, init=False, repr=False)
    _descriptor: ServiceDescriptor | None = field(default=None, init=False, repr=False)
    _dirs: DirectoryContext | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.services = ServiceGenerator(self.renderer)
        self.docker = DockerGenerator(self.renderer)
        self.persistence = PersistenceGenerator(self.renderer)

    @property
    def project(self) -> ProjectContext:
        return _require(self._project, "project context", "resolve-project")

    @project.setter
    def project(self, value: ProjectContext) -> None:
        self._project = value

    @property
    def descriptor(self) -> ServiceDescriptor:
        return _require(self._descriptor, "service descriptor", "parse-proto")

    @descriptor.setter
    def descriptor(self, value: ServiceDescriptor) -> None:
        self._descriptor = value

    @property
    def dirs(self) -> DirectoryContext:
        return _require(self._dirs, "directory plan", "plan-directories")

    @dirs.setter
    def dirs(self, value: DirectoryContext) -> None:
        self._dirs = value


def _require(value: Any, what: str, stage: str) -> Any:
    if value is None:
        raise GenerationError(f"{what} is not available before the {stage} stage")
    return value


# ---------------------------------------------------------------------------
# Stage implementations
# ---------------------------------------------------------------------------


async def _mkdir_output(run: RunContext) -> str:
    path = await asyncio.to_thread(ensure_dir, run.request.output_root)
    return str(path)


async def _merge_proto(run: RunContext) -> Any:
    desc_dir = run.request.desc_dir
    if not desc_dir.is_dir():
        return Skip("no desc directory")
    ctx = ProtoContext(proto_dir=desc_dir, output_path=run.request.src_path)
    merged = await asyncio.to_thread(merge_proto, ctx)
    if merged is None:
        return Skip("desc directory has no fragments")
    return f"merged into {merged.name}"


def _needs_module_init(request: GenerationRequest) -> bool:
    return bool(request.module_name) and not (request.output_root / "pyproject.toml").is_file()


def toolchain_commands(request: GenerationRequest) -> list[str]:
    """Every command line the run will start, in the order it starts them."""
    tc = request.toolchain
    commands: list[str] = []
    if _needs_module_init(request):
        commands.append(tc.expand("module_init", module_name=request.module_name))
    commands.append(tc.expand("protoc", includes="", pb_dir="pb", src=request.src.name))
    if request.persistence:
        commands.append(tc.expand("schema_init", migrations_dir="migrations"))
        commands.append(tc.expand("tidy"))
    if request.new_project:
        commands.append(tc.expand("upgrade"))
    return commands


async def _prepare_toolchain(run: RunContext) -> str:
    request = run.request
    found = require_tools(run.runner, toolchain_commands(request))
    if _needs_module_init(request):
        cmd = request.toolchain.expand("module_init", module_name=request.module_name)
        await run.runner.run(cmd, request.output_root)
    return ", ".join(sorted(found))


async def _resolve_project(run: RunContext) -> str:
    request = run.request
    run.project = resolve_project(request.output_root, request.module_name, request.style)
    return run.project.module_name


async def _parse_proto(run: RunContext) -> str:
    run.descriptor = await asyncio.to_thread(
        ProtoParser().parse, run.request.src_path, run.request.multiple
    )
    return ", ".join(s.name for s in run.descriptor.services)


async def _plan_directories(run: RunContext) -> str:
    run.dirs = plan_directories(run.project, run.descriptor, run.request)
    return f"{len(run.dirs.files)} file(s) planned"


def _emit(method: str) -> StageFn:
    """Stage calling ``ServiceGenerator.<method>(dirs, descriptor, request)``."""

    async def stage(run: RunContext) -> str:
        emitter = getattr(run.services, method)
        written = await emitter(run.dirs, run.descriptor, run.request)
        return f"{len(written)} file(s)"

    return stage


async def _gen_pb(run: RunContext) -> str:
    written = await run.services.gen_pb(run.dirs, run.descriptor, run.request, run.runner)
    return f"{len(written)} file(s)"


async def _gen_dockerfile(run: RunContext) -> str:
    path = await run.docker.gen_dockerfile(run.dirs, run.request)
    return path.name


async def _gen_gitignore(run: RunContext) -> str:
    path = await run.services.gen_gitignore(run.dirs.work_dir)
    return path.name


async def _db_schema_init(run: RunContext) -> Any:
    ran = await run.persistence.schema_init(run.dirs, run.request, run.runner)
    return None if ran else Skip("migration environment exists")


async def _db_tidy(run: RunContext) -> None:
    await run.persistence.tidy(run.dirs, run.request, run.runner)


async def _db_codegen(run: RunContext) -> str:
    written = await run.persistence.codegen(run.dirs, run.request)
    return f"{len(written)} file(s)"


async def _db_fixture_cleanup(run: RunContext) -> Any:
    removed = await run.persistence.fixture_cleanup(run.dirs, run.request)
    return f"removed {len(removed)}" if removed else Skip("nothing to remove")


async def _db_error_handler(run: RunContext) -> str:
    return (await run.persistence.gen_error_handler(run.dirs)).name


async def _db_tx(run: RunContext) -> str:
    return (await run.persistence.gen_tx(run.dirs)).name


async def _project_upgrade(run: RunContext) -> None:
    await run.runner.run(run.request.toolchain.expand("upgrade"), run.dirs.work_dir)


async def _db_init_code(run: RunContext) -> Any:
    path = await run.persistence.gen_init_code(run.dirs, run.request, run.project.import_path)
    return path.name if path else Skip("persistence disabled")


# ---------------------------------------------------------------------------
# Stage list
# ---------------------------------------------------------------------------


def build_stages(request: GenerationRequest) -> list[Stage]:
    """The ordered stage list for *request*, fixed for the whole run."""
    stages = [
        Stage("mkdir-output", _mkdir_output),
        Stage("merge-proto", _merge_proto),
        Stage("prepare-toolchain", _prepare_toolchain),
        Stage("resolve-project", _resolve_project),
        Stage("parse-proto", _parse_proto),
        Stage("plan-directories", _plan_directories),
        Stage("gen-etc", _emit("gen_etc")),
        Stage("gen-pb", _gen_pb),
        Stage("gen-config", _emit("gen_config")),
        Stage("gen-svc", _emit("gen_svc")),
        Stage("gen-logic", _emit("gen_logic")),
        Stage("gen-server", _emit("gen_server")),
        Stage("gen-main", _emit("gen_main")),
    ]
    if request.gen_client:
        stages.append(Stage("gen-call", _emit("gen_call")))
    if request.make_file:
        stages.append(Stage("gen-makefile", _emit("gen_makefile")))
    if request.docker_file:
        stages.append(Stage("gen-dockerfile", _gen_dockerfile))
    if request.use_desc_dir:
        stages.append(Stage("gen-desc", _emit("gen_base_desc")))
    if request.persistence:
        stages.extend([
            Stage("db-schema-init", _db_schema_init),
            Stage("db-tidy", _db_tidy),
            Stage("db-codegen", _db_codegen),
            Stage("db-fixture-cleanup", _db_fixture_cleanup),
            Stage("db-error-handler", _db_error_handler),
            Stage("db-tx", _db_tx),
            Stage("db-tidy-final", _db_tidy),
        ])
    if request.new_project:
        stages.extend([
            Stage("project-upgrade", _project_upgrade),
            Stage("db-init-code", _db_init_code),
        ])
    stages.append(Stage("gen-gitignore", _gen_gitignore))
    return stages


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class StageDriver:
    """Executes stages in order and stops at the first failure."""

    def __init__(self, echo: bool = True) -> None:
        self.echo = echo

    async def execute(self, stages: list[Stage], run: RunContext) -> list[StageResult]:
        """Run every stage of *stages* against *run*.

        Returns:
            One ``StageResult`` per stage, in execution order.

        Raises:
            StageError: For the first stage that raised, with the original
                exception as ``__cause__`` and the results so far attached.
        """
        results: list[StageResult] = []
        for stage in stages:
            start = time.monotonic()
            try:
                outcome = await stage.run(run)
            except Exception as exc:
                result = StageResult(
                    name=stage.name,
                    status="failed",
                    elapsed=time.monotonic() - start,
                    detail=str(exc),
                )
                results.append(result)
                self._report(result)
                raise StageError(stage.name, exc, results) from exc

            if isinstance(outcome, Skip):
                status, detail = "skipped", outcome.reason
            else:
                status, detail = "ok", str(outcome) if outcome else ""
            result = StageResult(
                name=stage.name,
                status=status,
                elapsed=time.monotonic() - start,
                detail=detail,
            )
            results.append(result)
            self._report(result)
        return results

    def _report(self, result: StageResult) -> None:
        if self.echo:
            print_stage(result.name, result.status, result.detail)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


class Generator:
    """Scaffolds one rpc service per ``generate`` call.

    Attributes:
        runner: Executes external tools; a ``SubprocessRunner`` by default.
        renderer: Jinja2 renderer shared by every emitter.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        renderer: TemplateRenderer | None = None,
        echo: bool = True,
    ) -> None:
        self.runner = runner or SubprocessRunner(echo=echo)
        self.renderer = renderer or TemplateRenderer()
        self.driver = StageDriver(echo=echo)
        self.echo = echo

    async def generate(self, request: GenerationRequest) -> list[StageResult]:
        """Run the full pipeline for *request*.

        Raises:
            StageError: If any stage fails.
        """
        if self.echo:
            print_header(f"protoscaffold: {request.src.name}", color="bright_cyan")
            console.print("Generating...")

        run = RunContext(request=request, runner=self.runner, renderer=self.renderer)
        try:
            results = await self.driver.execute(build_stages(request), run)
        except StageError as exc:
            if self.echo:
                print_results_table(exc.results)
                print_error(str(exc))
            raise

        if self.echo:
            print_results_table(results)
            print_success("Done.")
        return results


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``python -m protoscaffold.pipeline``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="protoscaffold -- generate a gRPC service from a proto file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m protoscaffold.pipeline greeter.proto\n"
            "  python -m protoscaffold.pipeline greeter.proto -o ./greeter --makefile\n"
            "  python -m protoscaffold.pipeline user.proto --persistence --new-project -m user\n"
        ),
    )

    parser.add_argument("src", help="Path to the .proto file")
    parser.add_argument("--output", "-o", default=None, help="Output directory (default: .)")
    parser.add_argument("--multiple", action="store_true", default=None,
                        help="Allow more than one service in the proto")
    parser.add_argument("--no-client", dest="gen_client", action="store_false", default=None,
                        help="Do not generate client stubs")
    parser.add_argument("--makefile", dest="make_file", action="store_true", default=None,
                        help="Generate a Makefile")
    parser.add_argument("--dockerfile", dest="docker_file", action="store_true", default=None,
                        help="Generate a Dockerfile")
    parser.add_argument("--desc", dest="use_desc_dir", action="store_true", default=None,
                        help="Write proto fragments to desc/")
    parser.add_argument("--i18n", action="store_true", default=None,
                        help="Enable internationalisation settings")
    parser.add_argument("--persistence", action="store_true", default=None,
                        help="Scaffold the SQLAlchemy/Alembic persistence layer")
    parser.add_argument("--new-project", dest="new_project", action="store_true", default=None,
                        help="Bootstrap a brand-new project")
    parser.add_argument("--module-name", "-m", dest="module_name", default=None,
                        help="Module name; initialises a project when none exists")
    parser.add_argument("--name", dest="service_name", default=None,
                        help="Service name (default: proto file stem)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Service port (default: 9100)")
    parser.add_argument("--schema", dest="schema_path", default=None,
                        help="Persistence package directory (default: db)")
    parser.add_argument("--style", choices=["snake", "flat"], default=None,
                        help="File naming style (default: snake)")
    parser.add_argument("--proto-path", "-I", dest="proto_paths", action="append", default=None,
                        help="Extra proto import root (repeatable)")
    parser.add_argument("--config", default=None,
                        help="JSON request file; command-line options override it")

    args = parser.parse_args(argv)
    options = {k: v for k, v in vars(args).items() if k != "config" and v is not None}

    try:
        if args.config:
            request = GenerationRequest.load(Path(args.config), **options)
        else:
            request = GenerationRequest(toolchain=ToolchainConfig.from_env(), **options)
    except (OSError, ValidationError) as exc:
        console.print(f"[bold red]Error:[/bold red] invalid request: {exc}")
        sys.exit(1)

    try:
        asyncio.run(Generator().generate(request))
    except ScaffoldError:
        sys.exit(1)


if __name__ == "__main__":
    main()
