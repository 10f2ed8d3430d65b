"""HTTP protocol definitions for the relay front-end."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

RUN_PATH = "/run"
STATUS_PATH = "/status"


class RunRequest(BaseModel):
    """Body of ``POST /run``."""

    command: str = Field("", description="Shell command to run")

    @field_validator("command", mode="before")
    @classmethod
    def _coerce_command(cls, v: Any) -> str:
        # Non-string values run as an empty command
        return v if isinstance(v, str) else ""


class RunQueuedResponse(BaseModel):
    """Reply when a command was queued on the live session."""

    queued: bool = Field(True, description="Command accepted for delivery")
    session_id: str = Field(..., description="Session the command was queued on")


class StatusResponse(BaseModel):
    """Relay status response."""

    status: str = Field(..., description="Server status")
    mode: str = Field(..., description="Relay mode")
    version: str = Field(..., description="cmdrelay version")
    uptime: float = Field(..., description="Uptime in seconds")
    session_state: str | None = Field(None, description="Session state (session mode)")
    session_id: str | None = Field(None, description="Session id (session mode)")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Error code")
    details: dict[str, Any] | None = Field(None, description="Additional error details")
