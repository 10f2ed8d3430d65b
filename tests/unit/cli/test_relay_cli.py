"""Unit tests for the cmdrelay command line."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest
import toml
from click.testing import CliRunner

from cmdrelay.cli import main as cli_main
from cmdrelay.cli.main import cli, run_serve
from cmdrelay.models import Config, RelayMode, ServerConfig
from cmdrelay.utils.exceptions import ContainerError

pytestmark = [pytest.mark.unit, pytest.mark.cli]


@pytest.fixture
def runner():
    return CliRunner()


def _last_json(output: str) -> dict:
    return json.loads(output.strip().splitlines()[-1])


class TestExecCommand:
    """Test `cmdrelay exec`."""

    def test_echo(self, runner):
        """Test the JSON result is printed and the exit code is 0."""
        result = runner.invoke(cli, ["exec", "echo hi"], obj={})

        assert result.exit_code == 0, result.output
        assert _last_json(result.stdout) == {"stdout": "hi\n", "stderr": "", "exit_code": 0}

    def test_exit_code_is_forwarded(self, runner):
        """Test a failing command exits with its code."""
        result = runner.invoke(cli, ["exec", "exit 3"], obj={})

        assert result.exit_code == 3
        assert _last_json(result.stdout)["exit_code"] == 3

    def test_signal_death_maps_to_shell_status(self, runner):
        """Test a shell killed by a signal exits with 128 plus the signal number."""
        result = runner.invoke(cli, ["exec", "kill -9 $$"], obj={})

        assert result.exit_code == 137
        assert _last_json(result.stdout)["exit_code"] == -9

    def test_missing_shell(self, runner, tmp_path):
        """Test a spawn failure exits 1 with an error body."""
        result = runner.invoke(
            cli, ["exec", "true", "--shell", str(tmp_path / "nosh")], obj={}
        )

        assert result.exit_code == 1
        assert "error" in _last_json(result.stdout)


class TestConfigCommands:
    """Test configuration handling on the command line."""

    def test_show_defaults(self, runner):
        """Test `config show` prints the effective TOML."""
        result = runner.invoke(cli, ["config", "show"], obj={})

        assert result.exit_code == 0, result.output
        data = toml.loads(result.stdout)
        assert data["server"]["port"] == 5000
        assert data["session"]["app_url"] == "http://localhost:3000"

    def test_show_with_config_file(self, runner, tmp_path):
        """Test --config is loaded."""
        path = tmp_path / "relay.toml"
        path.write_text('[server]\nmode = "session"\nport = 8080\n', encoding="utf-8")

        result = runner.invoke(cli, ["--config", str(path), "config", "show"], obj={})

        assert result.exit_code == 0, result.output
        data = toml.loads(result.stdout)
        assert data["server"]["mode"] == "session"
        assert data["server"]["port"] == 8080

    def test_invalid_config_file(self, runner, tmp_path):
        """Test a broken config file is a usage error."""
        path = tmp_path / "relay.toml"
        path.write_text("[server\n", encoding="utf-8")

        result = runner.invoke(cli, ["--config", str(path), "config", "show"], obj={})

        assert result.exit_code == 1
        assert "Failed to load config file" in result.output

    def test_verbose_sets_debug(self, runner):
        """Test -v switches the package logger to DEBUG."""
        result = runner.invoke(cli, ["-v", "config", "show"], obj={})

        assert result.exit_code == 0, result.output
        assert logging.getLogger("cmdrelay").level == logging.DEBUG


class TestServeCommand:
    """Test `cmdrelay serve` and `cmdrelay up`."""

    def test_session_attach_failure_exits_1(self, runner):
        """Test an unreachable application aborts startup."""
        result = runner.invoke(
            cli,
            ["serve", "--mode", "session", "--app-url", "http://127.0.0.1:1", "--port", "0"],
            obj={},
            env={"CMDRELAY_READINESS_ATTEMPTS": "1", "CMDRELAY_READINESS_DELAY": "0"},
        )

        assert result.exit_code == 1
        assert "Failed to attach to session" in result.output

    def test_invalid_override(self, runner):
        """Test an override that fails validation is reported."""
        result = runner.invoke(cli, ["serve", "--port", "3000"], obj={})

        assert result.exit_code == 1
        assert "Invalid configuration override" in result.output

    def test_serve_passes_overrides(self, runner, monkeypatch):
        """Test CLI options reach run_serve()."""
        seen = []

        async def fake_serve(cfg, stop=None):
            seen.append(cfg)

        monkeypatch.setattr(cli_main, "run_serve", fake_serve)

        result = runner.invoke(
            cli,
            ["serve", "--host", "127.0.0.1", "--port", "0", "--token", "ghp_x"],
            obj={},
        )

        assert result.exit_code == 0, result.output
        assert seen[0].server.host == "127.0.0.1"
        assert seen[0].server.port == 0
        assert seen[0].session.github_token == "ghp_x"

    def test_up_bootstraps_then_serves(self, runner, monkeypatch):
        """Test `up` runs the bootstrap before serving."""
        calls = []

        async def fake_bootstrap(cfg):
            calls.append("bootstrap")

        async def fake_serve(cfg, stop=None):
            calls.append(("serve", cfg.server.mode))

        monkeypatch.setattr(cli_main, "run_bootstrap", fake_bootstrap)
        monkeypatch.setattr(cli_main, "run_serve", fake_serve)

        result = runner.invoke(cli, ["up", "--mode", "session"], obj={})

        assert result.exit_code == 0, result.output
        assert calls == ["bootstrap", ("serve", RelayMode.SESSION)]

    def test_up_stops_on_bootstrap_failure(self, runner, monkeypatch):
        """Test a failed bootstrap never starts the relay."""
        served = []

        async def failing_bootstrap(cfg):
            raise ContainerError("docker run failed")

        async def fake_serve(cfg, stop=None):
            served.append(cfg)

        monkeypatch.setattr(cli_main, "run_bootstrap", failing_bootstrap)
        monkeypatch.setattr(cli_main, "run_serve", fake_serve)

        result = runner.invoke(cli, ["up"], obj={})

        assert result.exit_code == 1
        assert "Bootstrap failed" in result.output
        assert served == []

    def test_bootstrap_command(self, runner, monkeypatch):
        """Test `bootstrap` reports the running container."""

        async def fake_bootstrap(cfg):
            return None

        monkeypatch.setattr(cli_main, "run_bootstrap", fake_bootstrap)

        result = runner.invoke(cli, ["bootstrap"], obj={})

        assert result.exit_code == 0, result.output
        assert "openhands-app is running" in result.output


class TestRunServe:
    """Test run_serve() directly."""

    @pytest.mark.asyncio
    async def test_shell_mode_stops_on_event(self):
        """Test the relay starts and stops when the stop event fires."""
        cfg = Config(server=ServerConfig(host="127.0.0.1", port=0))
        stop = asyncio.Event()
        task = asyncio.create_task(run_serve(cfg, stop))

        await asyncio.sleep(0.05)
        assert not task.done()
        stop.set()

        await asyncio.wait_for(task, 2)
