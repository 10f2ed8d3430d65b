"""HTTP front-end."""

from __future__ import annotations

from cmdrelay.server.http_server import RelayServer

__all__ = ["RelayServer"]
