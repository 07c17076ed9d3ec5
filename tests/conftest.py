"""Shared pytest fixtures for the protoscaffold test suite.

Provides reusable fixtures for:
- A recording fake ``CommandRunner``
- Sample proto sources and fragment directories
- Generation requests rooted in ``tmp_path``
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from protoscaffold.config import GenerationRequest, ToolchainConfig
from protoscaffold.errors import ToolchainError


# ---------------------------------------------------------------------------
# Fake command runner
# ---------------------------------------------------------------------------


class FakeRunner:
    """Records every command instead of running it.

    Attributes:
        calls: ``(cmd, cwd)`` tuples in invocation order.
        missing: Program names ``look_path`` reports as not installed.
        fail_on: Substrings; a command containing one raises ``ToolchainError``.
        effects: Substring -> callback invoked with ``cwd`` to simulate a
            tool's side effects on disk.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Path]] = []
        self.missing: set[str] = set()
        self.fail_on: list[str] = []
        self.effects: dict[str, Callable[[Path], None]] = {}

    async def run(self, cmd: str, cwd: Path) -> str:
        self.calls.append((cmd, Path(cwd)))
        for needle in self.fail_on:
            if needle in cmd:
                raise ToolchainError(f"`{cmd}` exited with status 1", cmd=cmd, returncode=1)
        for needle, effect in self.effects.items():
            if needle in cmd:
                effect(Path(cwd))
        return ""

    def look_path(self, name: str) -> str | None:
        if name in self.missing:
            return None
        return f"/usr/bin/{name}"

    @property
    def commands(self) -> list[str]:
        return [cmd for cmd, _ in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """A fresh recording runner."""
    return FakeRunner()


def simulate_schema_init(cwd: Path, schema_path: str = "db") -> None:
    """What the migration tool leaves behind on ``init``."""
    migrations = cwd / schema_path / "migrations"
    (migrations / "versions").mkdir(parents=True, exist_ok=True)
    (migrations / "env.py").write_text("# migration env\n", encoding="utf-8")
    (migrations / "README").write_text("Generic single-database configuration.\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# Proto sources
# ---------------------------------------------------------------------------

GREETER_PROTO = textwrap.dedent(
    """\
    syntax = "proto3";

    package greeter;

    // A greeting request.
    message HelloRequest {
      string name = 1;
    }

    message HelloReply {
      string message = 1;
    }

    // The greeting service.
    service Greeter {
      rpc SayHello (HelloRequest) returns (HelloReply);
    }
    """
)

USER_CENTER_PROTO = textwrap.dedent(
    """\
    syntax = "proto3";

    package user_center;

    message UserInfo {
      uint64 id = 1;
      string username = 2;
    }

    message UserListResp {
      repeated UserInfo data = 1;
    }

    message PageReq {
      uint64 page = 1;
    }

    service UserCenter {
      rpc GetUserById (UserIdReq) returns (UserInfo);
      rpc GetUserList (PageReq) returns (UserListResp);
      rpc WatchUsers (PageReq) returns (stream UserInfo);
    }

    message UserIdReq {
      uint64 id = 1;
    }
    """
)


@pytest.fixture
def greeter_proto(tmp_path: Path) -> Path:
    """``greeter.proto`` inside a fresh output root."""
    root = tmp_path / "greeter"
    root.mkdir()
    path = root / "greeter.proto"
    path.write_text(GREETER_PROTO, encoding="utf-8")
    return path


@pytest.fixture
def user_center_proto(tmp_path: Path) -> Path:
    root = tmp_path / "usercenter"
    root.mkdir()
    path = root / "user_center.proto"
    path.write_text(USER_CENTER_PROTO, encoding="utf-8")
    return path


@pytest.fixture
def make_request() -> Callable[..., GenerationRequest]:
    """Factory for a request whose output root is the proto's directory.

    The module name defaults to the proto stem and the toolchain to the
    built-in commands, independent of the environment.
    """

    def factory(src: Path, **overrides) -> GenerationRequest:
        values = {
            "src": src,
            "output": src.parent,
            "module_name": src.stem,
            "toolchain": ToolchainConfig(),
        }
        values.update(overrides)
        return GenerationRequest(**values)

    return factory


@pytest.fixture
def write_fragments(tmp_path: Path) -> Callable[..., Path]:
    """Write ``{name: text}`` fragments into ``<tmp>/<dir_name>`` in the given order."""

    def factory(fragments: dict[str, str], dir_name: str = "desc") -> Path:
        directory = tmp_path / dir_name
        directory.mkdir(parents=True, exist_ok=True)
        for name, text in fragments.items():
            (directory / name).write_text(textwrap.dedent(text), encoding="utf-8")
        return directory

    return factory


@pytest.fixture
def schema_tool() -> Callable[..., None]:
    """Side effect of the migration tool's ``init`` command, for ``FakeRunner.effects``."""
    return simulate_schema_init
