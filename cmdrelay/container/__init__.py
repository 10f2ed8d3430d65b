"""Container runtime bootstrap."""

from __future__ import annotations

from cmdrelay.container.runtime import (
    ContainerBootstrapper,
    build_pull_args,
    build_run_args,
    installer_steps,
)

__all__ = [
    "ContainerBootstrapper",
    "build_pull_args",
    "build_run_args",
    "installer_steps",
]
