"""Host shell command executor.

Runs an arbitrary command string through the host shell and captures the
complete output. The input is neither validated nor sanitized; the caller
owns the trust boundary.
"""

from __future__ import annotations

import asyncio

from cmdrelay.models import ExecutionResult
from cmdrelay.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SHELL = "/bin/sh"


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


async def execute(command: str, shell: str = DEFAULT_SHELL) -> ExecutionResult:
    """Run ``command`` with ``<shell> -c`` and capture stdout, stderr and exit code.

    A single attempt is made. If the shell cannot be started the result
    carries only ``error``.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            shell,
            "-c",
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    # ValueError: arguments the OS cannot accept, such as an embedded NUL
    except (OSError, ValueError) as e:
        logger.warning("Failed to start %s: %s", shell, e)
        return ExecutionResult(error=str(e))

    stdout, stderr = await process.communicate()
    return ExecutionResult(
        stdout=_decode(stdout),
        stderr=_decode(stderr),
        exit_code=process.returncode,
    )


class ShellExecutor:
    """Executor bound to a configured shell."""

    def __init__(self, shell: str = DEFAULT_SHELL):
        self.shell = shell

    async def execute(self, command: str) -> ExecutionResult:
        """Run one command and log its outcome."""
        logger.debug("Executing command via %s: %r", self.shell, command)
        result = await execute(command, shell=self.shell)
        if result.error is not None:
            logger.error("Command could not be started: %s", result.error)
        else:
            logger.debug("Command exited with %s", result.exit_code)
        return result

    def __repr__(self) -> str:
        return f"ShellExecutor(shell={self.shell!r})"
