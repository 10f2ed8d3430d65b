"""Session attachment client.

Attaches to the application's real-time session: waits for the service to
answer, performs the polling handshake to obtain a session identifier,
upgrades to a websocket and relays queued commands as RUN envelopes.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, NamedTuple

import aiohttp

from cmdrelay.models import SessionConfig, SessionState
from cmdrelay.session.protocol import (
    PONG_FRAME,
    PROBE_FRAME,
    PROBE_REPLY,
    UPGRADE_FRAME,
    Frame,
    decode_event,
    decode_frame,
    encode_command,
    extract_session_id,
    polling_url,
    websocket_url,
)
from cmdrelay.utils.exceptions import (
    ConnectError,
    HandshakeParseError,
    SendError,
    ServerUnavailableError,
)
from cmdrelay.utils.logging_config import get_logger
from cmdrelay.utils.tasks import BackgroundTaskGroup, CancellationToken, CancelledByToken

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
FrameObserver = Callable[[Frame], None]

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


class _Pending(NamedTuple):
    """Outbound queue item: a command to wrap, or a raw control frame."""

    command: str | None = None
    raw: str | None = None


class SessionHandle:
    """Live attachment to a remote session.

    The handle owns the websocket. The inbound loop is the only reader and
    the outbound loop the only writer; callers interact through :meth:`send`.
    """

    def __init__(
        self,
        session_id: str,
        websocket: aiohttp.ClientWebSocketResponse,
        hidden: bool = False,
        on_frame: FrameObserver | None = None,
        close_timeout: float = 5.0,
    ):
        self.session_id = session_id
        self.hidden = hidden
        self.on_frame = on_frame
        self.close_timeout = close_timeout
        self.state = SessionState.CONNECTED
        self.frames_received = 0
        self.commands_sent = 0
        self.send_failures = 0

        self._ws = websocket
        self._queue: asyncio.Queue[_Pending] = asyncio.Queue()
        self._token = CancellationToken()
        self._tasks = BackgroundTaskGroup()
        self._started = False

    @property
    def closed(self) -> bool:
        """Return True once the connection is torn down."""
        return self.state == SessionState.CLOSED or self._token.cancelled

    @property
    def pending(self) -> int:
        """Number of queued frames not yet written."""
        return self._queue.qsize()

    def start(self, initial_frames: list[str] | None = None) -> None:
        """Spawn the inbound and outbound loops."""
        if self._started:
            return
        self._started = True
        for text in initial_frames or []:
            self._dispatch(text)
        self._tasks.create(self._inbound_loop(), name=f"session-inbound-{self.session_id}")
        self._tasks.create(self._outbound_loop(), name=f"session-outbound-{self.session_id}")

    def send(self, command: str) -> None:
        """Queue ``command`` for delivery.

        Raises:
            SendError: the connection has already been torn down.

        """
        if self.closed:
            msg = "Session connection is closed"
            raise SendError(msg, {"session_id": self.session_id})
        self._queue.put_nowait(_Pending(command=command))

    async def wait_closed(self) -> None:
        """Wait until both loops have finished."""
        await self._tasks.wait()

    async def close(self) -> None:
        """Stop both loops and close the websocket. Safe to call twice."""
        self._token.cancel()
        try:
            await asyncio.wait_for(self._tasks.wait(), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("Session loops did not stop in time, cancelling")
            await self._tasks.cancel_and_wait(timeout=self.close_timeout)

        if not self._ws.closed:
            await self._ws.close()

        if self.state != SessionState.CLOSED:
            self.state = SessionState.CLOSED
            logger.info("Session %s closed", self.session_id)

        dropped = self._queue.qsize()
        if dropped:
            logger.warning("Dropped %d undelivered frame(s) on close", dropped)

    def _mark_closed(self, reason: str) -> None:
        if self.state != SessionState.CLOSED:
            logger.warning("Session %s lost: %s", self.session_id, reason)
            self.state = SessionState.CLOSED
        self._token.cancel()

    def _handle_text(self, text: str) -> None:
        self.frames_received += 1
        frame = decode_frame(text)
        if frame.is_ping:
            self._queue.put_nowait(_Pending(raw=PONG_FRAME))
        event = decode_event(frame)
        if event is not None:
            logger.debug("Event %s: %s", event[0], event[1])
        else:
            logger.debug("Frame received: %r", text)
        if self.on_frame is not None:
            self.on_frame(frame)

    def _dispatch(self, text: str) -> None:
        try:
            self._handle_text(text)
        except Exception:
            logger.exception("Skipping frame that could not be handled: %.80r", text)

    async def _inbound_loop(self) -> None:
        reason = "connection closed by peer"
        try:
            while True:
                msg = await self._token.race(self._ws.receive())
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.debug("Ignoring %d byte binary frame", len(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"websocket error: {self._ws.exception()}"
                    break
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    break
        except CancelledByToken:
            return
        except _TRANSPORT_ERRORS as e:
            reason = f"receive failed: {e}"
        except Exception as e:
            logger.exception("Inbound loop for session %s failed", self.session_id)
            reason = f"inbound loop failed: {e}"
        self._mark_closed(reason)

    async def _outbound_loop(self) -> None:
        while True:
            try:
                item = await self._token.race(self._queue.get())
            except CancelledByToken:
                return

            text = item.raw if item.raw is not None else encode_command(
                item.command or "", hidden=self.hidden
            )
            try:
                await self._token.race(self._ws.send_str(text))
            except CancelledByToken:
                return
            except (aiohttp.ClientError, ConnectionError) as e:
                # The inbound loop detects a dead peer; a failed write only drops this frame
                self.send_failures += 1
                logger.warning("Failed to write frame to session %s: %s", self.session_id, e)
                continue

            if item.command is not None:
                self.commands_sent += 1
                logger.info("Relayed command to session %s", self.session_id)


class SessionAttachmentClient:
    """Connects to a Socket.IO service and hands out a :class:`SessionHandle`."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        http_session: aiohttp.ClientSession | None = None,
        sleep: SleepFunc = asyncio.sleep,
        on_frame: FrameObserver | None = None,
    ):
        """Initialize the client.

        Args:
            config: Retry bounds, token and timeouts (defaults if None)
            http_session: Shared aiohttp session; one is created and owned if None
            sleep: Delay function used between retries
            on_frame: Observer called with every inbound frame

        """
        self.config = config or SessionConfig()
        self.on_frame = on_frame
        self._sleep = sleep
        self._http = http_session
        self._owns_http = http_session is None
        self._state = SessionState.DISCONNECTED
        self.handle: SessionHandle | None = None
        self._token = CancellationToken()

    @property
    def state(self) -> SessionState:
        if self.handle is not None:
            return self.handle.state
        return self._state

    def _ensure_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )
            self._owns_http = True
        return self._http

    async def __aenter__(self) -> SessionAttachmentClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self, base_url: str | None = None) -> SessionHandle:
        """Attach to the service at ``base_url`` (default: configured app URL).

        Raises:
            ServerUnavailableError: readiness poll exhausted
            HandshakeParseError: no session identifier in the handshake body
            ConnectError: websocket upgrade retries exhausted, or the client
                was closed while waiting to retry

        """
        if self.handle is not None and not self.handle.closed:
            return self.handle
        if self._token.cancelled:
            self._token = CancellationToken()

        base = (base_url or self.config.app_url).rstrip("/")
        session = self._ensure_http()
        ws: aiohttp.ClientWebSocketResponse | None = None
        try:
            await self._wait_until_ready(session, base)
            self._state = SessionState.HANDSHAKING
            session_id = await self._handshake(session, base)
            url = websocket_url(base, session_id, self.config.github_token)
            ws = await self._upgrade(session, url)
            initial_frames = await self._probe(ws)
        except BaseException:
            if not self._token.cancelled:
                self._state = SessionState.DISCONNECTED
            if ws is not None and not ws.closed:
                await ws.close()
            raise

        handle = SessionHandle(
            session_id,
            ws,
            hidden=self.config.hidden_commands,
            on_frame=self.on_frame,
        )
        handle.start(initial_frames)
        self.handle = handle
        self._state = SessionState.CONNECTED
        logger.info("Attached to session %s at %s", session_id, base)
        return handle

    async def close(self) -> None:
        """Close the active handle and any HTTP session this client created."""
        self._token.cancel()
        if self.handle is not None:
            await self.handle.close()
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._state = SessionState.CLOSED

    async def _pause(self, delay: float) -> None:
        try:
            await self._token.race(self._sleep(delay))
        except CancelledByToken:
            msg = "Attachment cancelled while waiting to retry"
            raise ConnectError(msg) from None

    async def _wait_until_ready(self, session: aiohttp.ClientSession, base: str) -> None:
        attempts = self.config.readiness_attempts
        delay = self.config.readiness_delay
        for attempt in range(1, attempts + 1):
            try:
                async with session.get(base) as resp:
                    logger.debug(
                        "Readiness poll %d/%d answered with %d",
                        attempt,
                        attempts,
                        resp.status,
                    )
                    return
            except _TRANSPORT_ERRORS as e:
                logger.info(
                    "Waiting for %s (attempt %d/%d): %s", base, attempt, attempts, e
                )
            await self._pause(delay)

        msg = f"Server at {base} did not respond after {attempts} attempts"
        raise ServerUnavailableError(msg, {"attempts": attempts, "delay": delay})

    async def _handshake(self, session: aiohttp.ClientSession, base: str) -> str:
        url = polling_url(base)
        try:
            async with session.get(url) as resp:
                body = await resp.text(errors="replace")
        except _TRANSPORT_ERRORS as e:
            msg = f"Handshake request to {url} failed: {e}"
            raise HandshakeParseError(msg, {"url": url}) from e

        session_id = extract_session_id(body)
        if session_id is None:
            msg = "Handshake response did not contain a session id"
            raise HandshakeParseError(msg, {"url": url, "body": body[:200]})
        logger.debug("Handshake returned session id %s", session_id)
        return session_id

    async def _upgrade(
        self, session: aiohttp.ClientSession, url: str
    ) -> aiohttp.ClientWebSocketResponse:
        attempts = self.config.connect_attempts
        delay = self.config.connect_delay
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await session.ws_connect(url)
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning(
                    "Websocket upgrade attempt %d/%d failed: %s", attempt, attempts, e
                )
            await self._pause(delay)

        msg = f"Websocket upgrade failed after {attempts} attempts"
        raise ConnectError(msg, last_error=last_error) from last_error

    async def _probe(self, ws: aiohttp.ClientWebSocketResponse) -> list[str]:
        """Send the probe frame and, once answered, the upgrade frame.

        Returns frames read while waiting that were not the probe reply, so
        the inbound loop still sees them.
        """
        try:
            await ws.send_str(PROBE_FRAME)
        except (aiohttp.ClientError, ConnectionError) as e:
            msg = f"Failed to send probe frame: {e}"
            raise ConnectError(msg, last_error=e) from e

        if not self.config.send_upgrade_frame:
            return []

        try:
            msg = await ws.receive(timeout=self.config.request_timeout)
        except asyncio.TimeoutError:
            logger.warning("No probe reply, skipping upgrade frame")
            return []

        if msg.type != aiohttp.WSMsgType.TEXT:
            logger.warning("Unexpected %s while waiting for probe reply", msg.type)
            return []
        if msg.data != PROBE_REPLY:
            return [msg.data]

        try:
            await ws.send_str(UPGRADE_FRAME)
        except (aiohttp.ClientError, ConnectionError) as e:
            msg = f"Failed to send upgrade frame: {e}"
            raise ConnectError(msg, last_error=e) from e
        return []
