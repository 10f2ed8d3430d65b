"""Socket.IO / Engine.IO v4 wire helpers for the session client.

Defines the URLs, control frames and the event envelope framing used to
attach to the application's live session.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

from cmdrelay.models import CommandEnvelope

SOCKETIO_PATH = "/socket.io/"
ENGINEIO_VERSION = "4"

# Engine.IO packet types
PACKET_OPEN = "0"
PACKET_CLOSE = "1"
PACKET_PING = "2"
PACKET_PONG = "3"
PACKET_MESSAGE = "4"
PACKET_UPGRADE = "5"
PACKET_NOOP = "6"

# Socket.IO packet type carried inside an Engine.IO message
SOCKETIO_EVENT = "2"

PROBE_FRAME = f"{PACKET_PING}probe"
PROBE_REPLY = f"{PACKET_PONG}probe"
UPGRADE_FRAME = PACKET_UPGRADE
PONG_FRAME = PACKET_PONG
EVENT_PREFIX = f"{PACKET_MESSAGE}{SOCKETIO_EVENT}"
EVENT_NAME = "message"

SID_MARKER = '"sid":"'


@dataclass(frozen=True)
class Frame:
    """Decoded Engine.IO text frame."""

    packet_type: str
    payload: str

    @property
    def is_ping(self) -> bool:
        return self.packet_type == PACKET_PING and self.payload == ""

    @property
    def is_event(self) -> bool:
        return self.packet_type == PACKET_MESSAGE and self.payload.startswith(
            SOCKETIO_EVENT
        )


def polling_url(base_url: str) -> str:
    """Return the handshake URL for ``base_url``."""
    return f"{base_url.rstrip('/')}{SOCKETIO_PATH}?EIO={ENGINEIO_VERSION}&transport=polling"


def extract_session_id(body: str) -> str | None:
    """Pull the session identifier out of a handshake body.

    The polling handshake answers with an Engine.IO open packet such as
    ``0{"sid":"abc","upgrades":["websocket"],...}``, possibly batched with
    other packets, so the body is not a JSON document. The identifier is
    the text between the first ``"sid":"`` marker and the next double
    quote. Returns None when the marker is missing, unterminated, or the
    value is empty.
    """
    start = body.find(SID_MARKER)
    if start < 0:
        return None
    start += len(SID_MARKER)
    end = body.find('"', start)
    if end < 0:
        return None
    return body[start:end] or None


def auth_payload(token: str | None) -> str:
    """Return the URL-encoded JSON auth object for the connection URL."""
    return quote(json.dumps({"github_token": token}, separators=(",", ":")), safe="")


def websocket_url(base_url: str, session_id: str, token: str | None = None) -> str:
    """Build the persistent connection URL for an established session."""
    parts = urlsplit(base_url.rstrip("/"))
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    query = (
        f"EIO={ENGINEIO_VERSION}&transport=websocket"
        f"&sid={quote(session_id, safe='')}&auth={auth_payload(token)}"
    )
    return urlunsplit((scheme, parts.netloc, f"{parts.path}{SOCKETIO_PATH}", query, ""))


def encode_event(event: str, data: Any) -> str:
    """Encode a Socket.IO event as a text frame."""
    return EVENT_PREFIX + json.dumps([event, data], separators=(",", ":"))


def encode_envelope(envelope: CommandEnvelope) -> str:
    """Encode a command envelope as a ``message`` event frame."""
    return encode_event(EVENT_NAME, envelope.model_dump(mode="json"))


def encode_command(command: str, hidden: bool = False) -> str:
    """Encode ``command`` as a RUN envelope frame."""
    return encode_envelope(CommandEnvelope.run(command, hidden=hidden))


def decode_frame(text: str) -> Frame:
    """Split a text frame into its Engine.IO packet type and payload."""
    if not text:
        return Frame(packet_type="", payload="")
    return Frame(packet_type=text[0], payload=text[1:])


def decode_event(frame: Frame) -> tuple[str, Any] | None:
    """Return ``(event, data)`` for a Socket.IO event frame, else None."""
    if not frame.is_event:
        return None
    body = frame.payload[len(SOCKETIO_EVENT) :]
    # Optional namespace ("/ns,") and ack id digits precede the JSON array
    start = body.find("[")
    if start < 0:
        return None
    try:
        decoded = json.loads(body[start:])
    except (ValueError, RecursionError):
        return None
    if not isinstance(decoded, list) or not decoded or not isinstance(decoded[0], str):
        return None
    return decoded[0], decoded[1] if len(decoded) > 1 else None
