"""Unit tests for the host shell executor."""

from __future__ import annotations

import pytest

from cmdrelay.executor.shell import ShellExecutor, execute

pytestmark = [pytest.mark.unit, pytest.mark.executor]


class TestExecute:
    """Test execute() against the real /bin/sh."""

    @pytest.mark.asyncio
    async def test_echo_twice_gives_independent_results(self):
        """Test two calls produce equal but separate results."""
        first = await execute("echo hi")
        second = await execute("echo hi")

        for result in (first, second):
            assert result.stdout == "hi\n"
            assert result.stderr == ""
            assert result.exit_code == 0
            assert result.error is None
        assert first is not second

    @pytest.mark.asyncio
    async def test_captures_stderr_and_exit_code(self):
        """Test standard error and a non-zero exit code are captured."""
        result = await execute("echo oops >&2; exit 3")

        assert result.stdout == ""
        assert result.stderr == "oops\n"
        assert result.exit_code == 3
        assert not result.ok

    @pytest.mark.asyncio
    async def test_runs_through_shell(self):
        """Test pipes and variables are interpreted by the shell."""
        result = await execute("X=abc; printf '%s' \"$X\" | tr a-z A-Z")

        assert result.stdout == "ABC"
        assert result.exit_code == 0

    @pytest.mark.asyncio
    async def test_unknown_program_is_a_shell_failure(self):
        """Test a missing program reports the shell status, not a spawn error."""
        result = await execute("definitely-not-a-command-xyz")

        assert result.error is None
        assert result.exit_code == 127
        assert result.stderr

    @pytest.mark.asyncio
    async def test_spawn_failure_sets_only_error(self, tmp_path):
        """Test a shell that cannot start yields an error-only result."""
        result = await execute("echo hi", shell=str(tmp_path / "no-such-shell"))

        assert result.error
        assert result.stdout is None
        assert result.stderr is None
        assert result.exit_code is None
        assert result.to_response() == {"error": result.error}

    @pytest.mark.asyncio
    async def test_embedded_nul_sets_only_error(self):
        """Test a command the OS rejects yields an error-only result."""
        result = await execute("echo a\x00b")

        assert result.error
        assert result.to_response() == {"error": result.error}

    @pytest.mark.asyncio
    async def test_empty_command(self):
        """Test an empty command succeeds with no output."""
        result = await execute("")

        assert result.to_response() == {"stdout": "", "stderr": "", "exit_code": 0}

    @pytest.mark.asyncio
    async def test_does_not_read_stdin(self):
        """Test the child gets an empty stdin instead of blocking."""
        result = await execute("cat")

        assert result.stdout == ""
        assert result.exit_code == 0


class TestShellExecutor:
    """Test the ShellExecutor wrapper."""

    @pytest.mark.asyncio
    async def test_uses_configured_shell(self):
        """Test the configured shell is the one that runs the command."""
        executor = ShellExecutor(shell="/bin/sh")
        result = await executor.execute("echo $0")

        assert result.stdout.strip() == "/bin/sh"

    @pytest.mark.asyncio
    async def test_missing_shell(self, tmp_path):
        """Test a missing shell is reported through the result."""
        executor = ShellExecutor(shell=str(tmp_path / "missing"))

        result = await executor.execute("true")

        assert result.error
        assert not result.ok
