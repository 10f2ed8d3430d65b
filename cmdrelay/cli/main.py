"""Command line interface for cmdrelay.

Provides:
- ``bootstrap``: install the container runtime if needed and launch the app
- ``serve``: run the HTTP relay in shell or session mode
- ``up``: bootstrap then serve
- ``exec``: run a single command through the host executor
- ``config show``: print the effective configuration
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Any

import click
from rich.console import Console

from cmdrelay.config.config import ConfigManager
from cmdrelay.container.runtime import ContainerBootstrapper
from cmdrelay.executor.shell import ShellExecutor
from cmdrelay.models import Config, LogLevel, RelayMode
from cmdrelay.server.http_server import RelayServer
from cmdrelay.session.client import SessionAttachmentClient
from cmdrelay.utils.exceptions import (
    AttachError,
    BootstrapError,
    CmdRelayError,
    ConfigurationError,
)
from cmdrelay.utils.logging_config import get_logger, log_exception, setup_logging

logger = get_logger(__name__)
console = Console()


def _get_config_manager(ctx: click.Context) -> ConfigManager:
    return ctx.obj["config_manager"]


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)


async def run_bootstrap(cfg: Config) -> None:
    """Bring the application container up."""
    bootstrapper = ContainerBootstrapper(cfg.container, shell=cfg.server.shell)
    await bootstrapper.bootstrap()


async def run_serve(cfg: Config, stop: asyncio.Event | None = None) -> None:
    """Serve until ``stop`` is set (or SIGINT/SIGTERM when ``stop`` is None).

    Raises:
        AttachError: session mode could not attach to the application.

    """
    client: SessionAttachmentClient | None = None
    handle = None
    if cfg.server.mode == RelayMode.SESSION:
        client = SessionAttachmentClient(cfg.session)
        try:
            handle = await client.connect()
        except AttachError:
            await client.close()
            raise

    server = RelayServer(cfg.server, handle=handle)
    if stop is None:
        stop = asyncio.Event()
        _install_signal_handlers(stop)

    try:
        await server.start()
        console.print(
            f"[green]Relay listening on {server.url} ({cfg.server.mode.value} mode)[/green]"
        )
        await stop.wait()
    finally:
        await server.stop()
        if client is not None:
            await client.close()


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: debug)",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: int) -> None:
    """cmdrelay - bootstrap a containerized app and relay shell commands."""
    ctx.ensure_object(dict)
    try:
        config_manager = ConfigManager(config)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    if verbose:
        observability = config_manager.config.observability.model_copy(
            update={"log_level": LogLevel.DEBUG}
        )
        setup_logging(observability)

    ctx.obj["config_manager"] = config_manager
    ctx.obj["verbosity"] = verbose


def _apply(ctx: click.Context, overrides: dict[str, Any]) -> Config:
    try:
        return _get_config_manager(ctx).apply_overrides(overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _serve_options(func):
    options = [
        click.option(
            "--mode",
            type=click.Choice([m.value for m in RelayMode]),
            help="Run commands on the host shell or relay them into the app session",
        ),
        click.option("--host", help="Bind address"),
        click.option("--port", type=int, help="Bind port"),
        click.option("--app-url", help="Application base URL (session mode)"),
        click.option("--token", help="GitHub token sent in the session auth payload"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _serve_overrides(
    mode: str | None,
    host: str | None,
    port: int | None,
    app_url: str | None,
    token: str | None,
) -> dict[str, Any]:
    return {
        "server.mode": mode,
        "server.host": host,
        "server.port": port,
        "session.app_url": app_url,
        "session.github_token": token,
    }


def _bootstrap_failed(exc: BootstrapError) -> None:
    log_exception(logger, exc, "Bootstrap failed")
    console.print(f"[red]Bootstrap failed:[/red] {exc}")
    raise click.exceptions.Exit(1) from exc


def _run_serve(cfg: Config) -> None:
    try:
        asyncio.run(run_serve(cfg))
    except AttachError as e:
        log_exception(logger, e, "Session attach failed")
        console.print(f"[red]Failed to attach to session:[/red] {e}")
        raise click.exceptions.Exit(1) from e
    except CmdRelayError as e:
        log_exception(logger, e, "Relay failed")
        console.print(f"[red]Error:[/red] {e}")
        raise click.exceptions.Exit(1) from e


@cli.command()
@click.pass_context
def bootstrap(ctx: click.Context) -> None:
    """Install the container runtime if missing and launch the app container."""
    cfg = _get_config_manager(ctx).config
    try:
        asyncio.run(run_bootstrap(cfg))
    except BootstrapError as e:
        _bootstrap_failed(e)
    console.print(f"[green]Container {cfg.container.name} is running[/green]")


@cli.command()
@_serve_options
@click.pass_context
def serve(ctx: click.Context, mode, host, port, app_url, token) -> None:
    """Start the HTTP relay."""
    cfg = _apply(ctx, _serve_overrides(mode, host, port, app_url, token))
    _run_serve(cfg)


@cli.command()
@_serve_options
@click.pass_context
def up(ctx: click.Context, mode, host, port, app_url, token) -> None:
    """Bootstrap the app container, then start the HTTP relay."""
    cfg = _apply(ctx, _serve_overrides(mode, host, port, app_url, token))
    try:
        asyncio.run(run_bootstrap(cfg))
    except BootstrapError as e:
        _bootstrap_failed(e)
    _run_serve(cfg)


def _exit_status(exit_code: int | None) -> int:
    # A negative code means the shell was killed by that signal
    if exit_code is None or exit_code == 0:
        return 1
    if exit_code < 0:
        return 128 - exit_code
    return exit_code


@cli.command("exec")
@click.argument("command")
@click.option("--shell", help="Shell used to run the command")
@click.pass_context
def exec_command(ctx: click.Context, command: str, shell: str | None) -> None:
    """Run COMMAND on the host shell and print the JSON result."""
    cfg = _apply(ctx, {"server.shell": shell})
    result = asyncio.run(ShellExecutor(cfg.server.shell).execute(command))
    click.echo(result.model_dump_json(exclude_none=True))
    if not result.ok:
        raise click.exceptions.Exit(_exit_status(result.exit_code))


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration as TOML."""
    click.echo(_get_config_manager(ctx).export())


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
