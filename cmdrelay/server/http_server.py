"""HTTP front-end for the relay.

Accepts ``POST /run`` with ``{"command": "..."}`` and either runs the command
on the host shell or queues it on the live application session.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

from cmdrelay import __version__
from cmdrelay.executor.shell import ShellExecutor
from cmdrelay.models import RelayMode, ServerConfig
from cmdrelay.server.protocol import (
    RUN_PATH,
    STATUS_PATH,
    ErrorResponse,
    RunQueuedResponse,
    RunRequest,
    StatusResponse,
)
from cmdrelay.utils.exceptions import CmdRelayError, SendError
from cmdrelay.utils.logging_config import get_logger

if TYPE_CHECKING:
    from aiohttp.web_request import Request
    from aiohttp.web_response import Response

    from cmdrelay.session.client import SessionHandle

logger = get_logger(__name__)


def _error(message: str, code: str, status: int, details: dict[str, Any] | None = None) -> Response:
    return web.json_response(
        ErrorResponse(error=message, code=code, details=details).model_dump(),
        status=status,
    )


class RelayServer:
    """Relay HTTP server."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        executor: ShellExecutor | None = None,
        handle: SessionHandle | None = None,
    ):
        """Initialize relay server.

        Args:
            config: Bind address, port, mode and shell
            executor: Executor used in shell mode (built from config if None)
            handle: Attached session used in session mode

        """
        self.config = config or ServerConfig()
        self.mode = self.config.mode
        self.host = self.config.host
        self.port = self.config.port
        self.executor = executor or ShellExecutor(self.config.shell)
        self.handle = handle

        if self.mode == RelayMode.SESSION and handle is None:
            msg = "Session mode requires an attached session handle"
            raise CmdRelayError(msg)

        self.app = web.Application(middlewares=[self._error_middleware])
        self.app.router.add_post(RUN_PATH, self._handle_run)
        self.app.router.add_get(STATUS_PATH, self._handle_status)

        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._start_time = time.time()

    @web.middleware
    async def _error_middleware(self, request: Request, handler: Any) -> Response:
        """Turn unexpected exceptions into JSON 500 responses."""
        try:
            return await handler(request)
        except (asyncio.CancelledError, web.HTTPException):
            raise
        except Exception as e:
            logger.exception(
                "Error handling request %s %s from %s",
                request.method,
                request.path,
                request.remote,
            )
            return _error(str(e), "INTERNAL_ERROR", 500)

    async def _handle_run(self, request: Request) -> Response:
        """Handle POST /run."""
        try:
            data = await request.json()
        except ValueError as json_error:
            logger.warning("Invalid JSON in run request from %s: %s", request.remote, json_error)
            return _error(f"Invalid JSON: {json_error}", "INVALID_JSON", 400)

        req = RunRequest(**data) if isinstance(data, dict) else RunRequest()

        if self.mode == RelayMode.SESSION:
            return self._queue_on_session(req.command)

        result = await self.executor.execute(req.command)
        return web.json_response(result.to_response())

    def _queue_on_session(self, command: str) -> Response:
        if self.handle is None:
            msg = "Session mode requires an attached session handle"
            raise CmdRelayError(msg)
        try:
            self.handle.send(command)
        except SendError as e:
            logger.warning("Rejecting command, session unavailable: %s", e.message)
            return _error(e.message, "SESSION_CLOSED", 503, e.details or None)
        reply = RunQueuedResponse(session_id=self.handle.session_id)
        return web.json_response(reply.model_dump(), status=202)

    async def _handle_status(self, _request: Request) -> Response:
        """Handle GET /status."""
        status = StatusResponse(
            status="running",
            mode=self.mode.value,
            version=__version__,
            uptime=time.time() - self._start_time,
            session_state=self.handle.state.value if self.handle else None,
            session_id=self.handle.session_id if self.handle else None,
        )
        return web.json_response(status.model_dump())

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        """Start listening. With port 0 the bound port is stored on ``self.port``."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        try:
            await self.site.start()
        except OSError as e:
            await self.runner.cleanup()
            self.runner = None
            msg = f"Relay server failed to bind to {self.host}:{self.port}: {e}"
            raise CmdRelayError(msg) from e

        if self.port == 0 and self.runner.addresses:
            self.port = self.runner.addresses[0][1]
        self._start_time = time.time()
        logger.info("Relay server listening on %s (%s mode)", self.url, self.mode.value)

    async def stop(self) -> None:
        """Stop the server."""
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Relay server stopped")
