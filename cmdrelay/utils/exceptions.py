"""Exception hierarchy for cmdrelay.

Every error raised by the relay derives from :class:`CmdRelayError`, which
carries a message plus an optional ``details`` mapping for logging.
"""

from __future__ import annotations

from typing import Any


class CmdRelayError(Exception):
    """Base exception for all cmdrelay errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize cmdrelay error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class AttachError(CmdRelayError):
    """Session attachment errors raised by ``connect``."""


class ServerUnavailableError(AttachError):
    """Readiness poll exhausted without a response."""


class HandshakeParseError(AttachError):
    """Handshake body did not carry a session identifier."""


class ConnectError(AttachError):
    """Websocket upgrade retries exhausted."""

    def __init__(
        self,
        message: str,
        last_error: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize connect error with the last transport error."""
        super().__init__(message, details)
        self.last_error = last_error


class SendError(CmdRelayError):
    """Command could not be queued because the session is closed."""


class BootstrapError(CmdRelayError):
    """Container bootstrap errors."""


class InstallerError(BootstrapError):
    """Container runtime installation errors."""


class ContainerError(BootstrapError):
    """Image pull or container launch errors."""


class ConfigurationError(CmdRelayError):
    """Configuration validation errors."""
