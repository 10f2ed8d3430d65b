"""Configuration package for cmdrelay."""

from __future__ import annotations

from cmdrelay.config.config import ConfigManager

__all__ = [
    "ConfigManager",
]
