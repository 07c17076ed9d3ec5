"""Tests for external command execution (protoscaffold.runner)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from protoscaffold.errors import ToolchainError
from protoscaffold.runner import CommandRunner, SubprocessRunner, executable_of, require_tools


pytestmark = pytest.mark.unit


class TestSubprocessRunner:
    @pytest.mark.asyncio
    async def test_returns_stdout(self, tmp_path: Path):
        runner = SubprocessRunner(echo=False)
        assert await runner.run("echo hi", tmp_path) == "hi"

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path: Path):
        runner = SubprocessRunner(echo=False)
        assert Path(await runner.run("pwd", tmp_path)).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self, tmp_path: Path):
        runner = SubprocessRunner(echo=False)
        with pytest.raises(ToolchainError) as exc_info:
            await runner.run("echo oops 1>&2; exit 3", tmp_path)

        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "oops"
        assert exc_info.value.cmd == "echo oops 1>&2; exit 3"

    @pytest.mark.asyncio
    async def test_delegates_to_run_command(self, tmp_path: Path):
        runner = SubprocessRunner(echo=False)
        with patch(
            "protoscaffold.runner.run_command", new=AsyncMock(return_value=(0, "", ""))
        ) as mock_run:
            await runner.run("uv lock", tmp_path)

        mock_run.assert_awaited_once_with("uv lock", cwd=tmp_path)

    @pytest.mark.asyncio
    async def test_echo_prints_command_and_output(self, tmp_path: Path):
        runner = SubprocessRunner(echo=True)
        with patch(
            "protoscaffold.runner.run_command", new=AsyncMock(return_value=(0, "out", "warn"))
        ), patch("protoscaffold.runner.console") as console, patch(
            "protoscaffold.runner.print_output"
        ) as print_output:
            await runner.run("uv lock", tmp_path)

        assert "uv lock" in console.print.call_args.args[0]
        assert [c.args[0] for c in print_output.call_args_list] == ["out", "warn"]

    def test_look_path(self):
        runner = SubprocessRunner(echo=False)
        assert runner.look_path("sh")
        assert runner.look_path("definitely-not-installed-xyz") is None

    def test_satisfies_protocol(self, fake_runner):
        assert isinstance(SubprocessRunner(), CommandRunner)
        assert isinstance(fake_runner, CommandRunner)


class TestRequireTools:
    def test_executable_of(self):
        assert executable_of("uv lock --upgrade") == "uv"
        assert executable_of('"/opt/my python/bin/python" -m grpc_tools.protoc') == "/opt/my python/bin/python"

    @pytest.mark.parametrize("cmd", ["", "   ", "uv 'unterminated"])
    def test_executable_of_rejects(self, cmd: str):
        with pytest.raises(ToolchainError):
            executable_of(cmd)

    def test_all_present(self, fake_runner):
        found = require_tools(fake_runner, ["uv lock", "alembic init db/migrations", "uv lock --upgrade"])
        assert found == {"uv": "/usr/bin/uv", "alembic": "/usr/bin/alembic"}

    def test_reports_every_missing_tool(self, fake_runner):
        fake_runner.missing = {"uv", "alembic"}
        with pytest.raises(ToolchainError) as exc_info:
            require_tools(fake_runner, ["uv lock", "python -m x", "alembic init m", "uv lock --upgrade"])

        assert str(exc_info.value) == "required tools not found on PATH: uv, alembic"
