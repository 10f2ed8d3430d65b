"""Host command execution."""

from __future__ import annotations

from cmdrelay.executor.shell import ShellExecutor, execute

__all__ = ["ShellExecutor", "execute"]
