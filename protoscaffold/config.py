"""protoscaffold configuration.

``GenerationRequest`` is the single, immutable input of a generation run.
All settings use Pydantic v2 models so they are validated at construction
time and can be serialised to/from JSON or environment variables.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PORT = 9100


class ToolchainConfig(BaseModel):
    """Command templates for the external tools a run may invoke.

    Templates are expanded with ``str.format``.  Available placeholders:
    ``{python}``, ``{includes}``, ``{pb_dir}``, ``{src}``, ``{module_name}``
    and ``{migrations_dir}``.
    """

    model_config = ConfigDict(frozen=True)

    protoc: str = Field(
        default="{python} -m grpc_tools.protoc {includes} "
        "--python_out={pb_dir} --grpc_python_out={pb_dir} {src}",
        description="Compiles the proto into protobuf and gRPC stubs",
    )
    module_init: str = Field(
        default="uv init --bare --name {module_name}",
        description="Creates a pyproject.toml for a new module",
    )
    tidy: str = Field(default="uv lock", description="Resolves and locks dependencies")
    upgrade: str = Field(
        default="uv lock --upgrade", description="Upgrades a freshly created project"
    )
    schema_init: str = Field(
        default="alembic init --template generic {migrations_dir}",
        description="Bootstraps the persistence-layer migration environment",
    )

    def expand(self, name: str, **values: Any) -> str:
        """Return the command template *name* with placeholders filled in."""
        template: str = getattr(self, name)
        return template.format(python=_quoted_python(), **values)

    @classmethod
    def from_env(cls) -> "ToolchainConfig":
        """Build a ``ToolchainConfig`` from environment variables.

        Recognised variables (all optional):
            PROTOSCAFFOLD_PROTOC_CMD, PROTOSCAFFOLD_MODULE_INIT_CMD,
            PROTOSCAFFOLD_TIDY_CMD, PROTOSCAFFOLD_UPGRADE_CMD,
            PROTOSCAFFOLD_SCHEMA_INIT_CMD.
        """
        kwargs: dict[str, str] = {}
        for field_name in ("protoc", "module_init", "tidy", "upgrade", "schema_init"):
            value = os.environ.get(f"PROTOSCAFFOLD_{field_name.upper()}_CMD")
            if value:
                kwargs[field_name] = value
        return cls(**kwargs)


class GenerationRequest(BaseModel):
    """Everything a generation run needs, validated once and never mutated."""

    model_config = ConfigDict(frozen=True)

    src: Path = Field(..., description="Source proto file")
    output: Path = Field(default=Path("."), description="Output root of the service")
    multiple: bool = Field(default=False, description="Allow more than one service")
    gen_client: bool = Field(default=True, description="Generate client stubs")
    make_file: bool = Field(default=False, description="Emit a Makefile")
    docker_file: bool = Field(default=False, description="Emit a Dockerfile")
    use_desc_dir: bool = Field(
        default=False, description="Populate desc/ with split proto fragments"
    )
    i18n: bool = Field(default=False, description="Enable internationalisation settings")
    persistence: bool = Field(
        default=False, description="Scaffold the SQLAlchemy/Alembic persistence layer"
    )
    new_project: bool = Field(default=False, description="Bootstrap a brand-new project")
    module_name: str = Field(default="", description="Module to initialise, if any")
    service_name: str = Field(
        default="", description="Service name; defaults to the proto file stem"
    )
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    schema_path: str = Field(default="db", description="Persistence package directory")
    style: Literal["snake", "flat"] = Field(
        default="snake", description="File naming style of generated modules"
    )
    proto_paths: tuple[str, ...] = Field(
        default=(), description="Extra import roots passed to protoc as -I"
    )
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)

    @field_validator("src")
    @classmethod
    def _require_proto_suffix(cls, value: Path) -> Path:
        if value.suffix != ".proto":
            raise ValueError(f"source must be a .proto file, got {value}")
        return value

    @field_validator("schema_path")
    @classmethod
    def _relative_schema_path(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value or Path(value).is_absolute() or ".." in Path(value).parts:
            raise ValueError("schema_path must be a relative directory inside the project")
        return value

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def output_root(self) -> Path:
        """Absolute output root."""
        return self.output.expanduser().resolve()

    @property
    def src_path(self) -> Path:
        """Absolute source proto path."""
        return self.src.expanduser().resolve()

    @property
    def desc_dir(self) -> Path:
        """The description directory whose presence toggles merging."""
        return self.output_root / "desc"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the request to a JSON file and return the path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path, **overrides: Any) -> "GenerationRequest":
        """Load a request from JSON, applying keyword *overrides* on top."""
        raw = Path(path).read_text(encoding="utf-8")
        data = cls.model_validate_json(raw).model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)


def _quoted_python() -> str:
    """The running interpreter, quoted for a shell command line."""
    exe = sys.executable or "python3"
    return f'"{exe}"' if " " in exe else exe
