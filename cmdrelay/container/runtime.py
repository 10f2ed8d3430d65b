"""Container runtime bootstrap.

Detects or installs the container runtime, makes sure the sandbox runtime
image is present and launches the application container once. The launch
is rendered from :class:`ContainerConfig` into an argument list, so nothing
is substituted into a shell string.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from cmdrelay.models import ContainerConfig, VolumeMount
from cmdrelay.utils.exceptions import ContainerError, InstallerError
from cmdrelay.utils.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)

# Installer steps per platform (``sys.platform`` prefix). Each step is a shell
# line because several of them pipe between tools.
INSTALLER_STEPS: dict[str, tuple[str, ...]] = {
    "linux": (
        "sudo apt-get update",
        "sudo apt-get install -y apt-transport-https ca-certificates curl software-properties-common",
        "curl -fsSL https://download.docker.com/linux/ubuntu/gpg | sudo apt-key add -",
        "sudo add-apt-repository 'deb [arch=amd64] https://download.docker.com/linux/ubuntu focal stable'",
        "sudo apt-get update",
        "sudo apt-get install -y docker-ce docker-ce-cli containerd.io",
    ),
    "darwin": (
        '/bin/bash -c "$(curl -fsSL https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh)"',
        "brew install --cask docker",
    ),
    "win32": ("choco install docker-desktop",),
}


@dataclass
class CommandOutcome:
    """Exit status and captured output of a bootstrap command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[[Sequence[str], bool], Awaitable[CommandOutcome]]


async def run_command(args: Sequence[str], capture: bool = True) -> CommandOutcome:
    """Run ``args`` without a shell.

    With ``capture`` False the child inherits the terminal, so long pulls
    show their progress.

    Raises:
        FileNotFoundError: the executable does not exist.

    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE if capture else None,
        stderr=asyncio.subprocess.PIPE if capture else None,
    )
    stdout, stderr = await process.communicate()
    return CommandOutcome(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=(stdout or b"").decode("utf-8", errors="replace"),
        stderr=(stderr or b"").decode("utf-8", errors="replace"),
    )


def expand_source(mount: VolumeMount, home: Path | None = None) -> str:
    """Return the host side of ``mount`` with a leading ``~`` expanded."""
    source = mount.source
    if source == "~" or source.startswith("~/"):
        base = home if home is not None else Path.home()
        return str(base / source[2:]) if source != "~" else str(base)
    return source


def build_pull_args(config: ContainerConfig, image: str | None = None) -> list[str]:
    """Render ``docker pull`` for ``image`` (default: the runtime image)."""
    return [config.runtime_binary, "pull", image or config.runtime_image]


def build_run_args(config: ContainerConfig, home: Path | None = None) -> list[str]:
    """Render the application launch as an argument list."""
    args = [config.runtime_binary, "run"]
    args.append("-d" if config.detach else "-it")
    if config.remove_on_exit:
        args.append("--rm")
    if config.pull_always:
        args.append("--pull=always")

    env = {"SANDBOX_RUNTIME_CONTAINER_IMAGE": config.runtime_image}
    env.update(config.env)
    for key, value in env.items():
        args.extend(["-e", f"{key}={value}"])

    for mount in config.volumes:
        spec = f"{expand_source(mount, home)}:{mount.target}"
        if mount.read_only:
            spec += ":ro"
        args.extend(["-v", spec])

    for port in config.ports:
        args.extend(["-p", f"{port.host_port}:{port.container_port}"])

    for host, address in config.extra_hosts.items():
        args.extend(["--add-host", f"{host}:{address}"])

    args.extend(["--name", config.name, config.image])
    return args


def installer_steps(platform: str | None = None) -> tuple[str, ...]:
    """Return the runtime installer steps for ``platform``.

    Raises:
        InstallerError: no installer is known for the platform.

    """
    platform = platform or sys.platform
    for prefix, steps in INSTALLER_STEPS.items():
        if platform.startswith(prefix):
            return steps
    msg = f"Unsupported OS: {platform}"
    raise InstallerError(msg, {"platform": platform})


class ContainerBootstrapper:
    """Brings the application container up once."""

    def __init__(
        self,
        config: ContainerConfig | None = None,
        runner: Runner = run_command,
        platform: str | None = None,
        shell: str = "/bin/sh",
    ):
        self.config = config or ContainerConfig()
        self.platform = platform or sys.platform
        self.shell = shell
        self._runner = runner

    async def _run(self, args: Sequence[str], capture: bool = True) -> CommandOutcome | None:
        try:
            return await self._runner(args, capture)
        except FileNotFoundError:
            return None

    async def is_runtime_installed(self) -> bool:
        """Return True if ``<runtime> --version`` succeeds."""
        outcome = await self._run([self.config.runtime_binary, "--version"])
        return outcome is not None and outcome.ok

    async def install_runtime(self) -> None:
        """Run the platform installer steps in order.

        Raises:
            InstallerError: the platform is unsupported or a step failed.

        """
        for step in installer_steps(self.platform):
            logger.info("Installer step: %s", step)
            outcome = await self._run([self.shell, "-c", step])
            if outcome is None:
                msg = f"Failed to execute command: {step}"
                raise InstallerError(msg, {"shell": self.shell})
            if not outcome.ok:
                msg = f"Command failed: {step}"
                raise InstallerError(
                    msg,
                    {"returncode": outcome.returncode, "stderr": outcome.stderr.strip()},
                )

    async def is_image_present(self, image: str | None = None) -> bool:
        """Return True if ``image`` is listed by ``<runtime> images``."""
        image = image or self.config.runtime_image
        outcome = await self._run(
            [
                self.config.runtime_binary,
                "images",
                "--format",
                "{{.Repository}}:{{.Tag}}",
            ]
        )
        if outcome is None or not outcome.ok:
            return False
        return any(line.strip() == image for line in outcome.stdout.splitlines())

    async def ensure_image(self) -> bool:
        """Pull the runtime image if it is absent. Returns True if a pull ran.

        Raises:
            ContainerError: the pull failed.

        """
        if await self.is_image_present():
            logger.info("Container image %s found", self.config.runtime_image)
            return False

        logger.info("Container image %s not found, pulling", self.config.runtime_image)
        args = build_pull_args(self.config)
        outcome = await self._run(args, capture=False)
        if outcome is None or not outcome.ok:
            msg = f"Failed to pull {self.config.runtime_image}"
            raise ContainerError(msg, {"args": args})
        return True

    async def launch(self) -> None:
        """Run the application container.

        Raises:
            ContainerError: the runtime could not be started or exited non-zero.

        """
        args = build_run_args(self.config)
        logger.info("Running container %s", self.config.name)
        outcome = await self._run(args, capture=self.config.detach)
        if outcome is None:
            msg = f"Failed to execute {self.config.runtime_binary} run"
            raise ContainerError(msg, {"args": args})
        if not outcome.ok:
            msg = f"{self.config.runtime_binary} run failed"
            raise ContainerError(
                msg,
                {"returncode": outcome.returncode, "stderr": outcome.stderr.strip()},
            )
        logger.info("Container %s is running", self.config.name)

    async def bootstrap(self) -> None:
        """Install the runtime if missing, ensure the image and launch once."""
        with LoggingContext("container_bootstrap", logger=logger, container=self.config.name):
            if await self.is_runtime_installed():
                logger.info("%s is already installed", self.config.runtime_binary)
            else:
                logger.info("%s not detected, installing", self.config.runtime_binary)
                await self.install_runtime()
                logger.info("%s installed successfully", self.config.runtime_binary)
            await self.ensure_image()
            await self.launch()
