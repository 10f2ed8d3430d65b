"""Data models for cmdrelay.

Configuration sections and the value types passed between the executor,
the session client and the HTTP front-end.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RelayMode(str, Enum):
    """Where ``POST /run`` sends commands."""

    SHELL = "shell"
    SESSION = "session"


class SessionState(str, Enum):
    """Lifecycle of a session attachment."""

    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    CONNECTED = "connected"
    CLOSED = "closed"


class ExecutionResult(BaseModel):
    """Outcome of a single host shell invocation.

    A result either carries the captured streams and exit code, or only
    ``error`` when the shell process could not be started.
    """

    stdout: str | None = Field(None, description="Captured standard output")
    stderr: str | None = Field(None, description="Captured standard error")
    exit_code: int | None = Field(None, description="Process exit code")
    error: str | None = Field(None, description="Spawn failure message")

    @property
    def ok(self) -> bool:
        """Return True if the process started and exited with 0."""
        return self.error is None and self.exit_code == 0

    def to_response(self) -> dict[str, Any]:
        """Render as the JSON body returned by ``POST /run``."""
        return self.model_dump(exclude_none=True)


class CommandArgs(BaseModel):
    """Arguments of a RUN envelope."""

    model_config = ConfigDict(frozen=True)

    command: str
    hidden: bool = False


class CommandEnvelope(BaseModel):
    """Event payload carrying one command into the remote session."""

    model_config = ConfigDict(frozen=True)

    action: str = Field("RUN", description="Fixed action tag")
    args: CommandArgs

    @classmethod
    def run(cls, command: str, hidden: bool = False) -> CommandEnvelope:
        """Build a RUN envelope for ``command``."""
        return cls(args=CommandArgs(command=command, hidden=hidden))

    @field_validator("action")
    @classmethod
    def _validate_action(cls, v: str) -> str:
        if v != "RUN":
            msg = f"Unsupported envelope action: {v}"
            raise ValueError(msg)
        return v


class VolumeMount(BaseModel):
    """Host path mounted into the container."""

    source: str = Field(..., description="Host path, '~' is expanded")
    target: str = Field(..., description="Path inside the container")
    read_only: bool = Field(default=False, description="Mount read-only")


class PortMapping(BaseModel):
    """Published container port."""

    host_port: int = Field(..., ge=1, le=65535)
    container_port: int = Field(..., ge=1, le=65535)


class ContainerConfig(BaseModel):
    """Container launch configuration."""

    image: str = Field(
        default="docker.all-hands.dev/all-hands-ai/openhands:0.16",
        description="Application image",
    )
    runtime_image: str = Field(
        default="docker.all-hands.dev/all-hands-ai/runtime:0.16-nikolaik",
        description="Sandbox runtime image pulled before launch",
    )
    name: str = Field(default="openhands-app", description="Container name")
    ports: list[PortMapping] = Field(
        default_factory=lambda: [PortMapping(host_port=3000, container_port=3000)],
    )
    env: dict[str, str] = Field(
        default_factory=lambda: {"LOG_ALL_EVENTS": "true"},
        description="Extra environment variables",
    )
    volumes: list[VolumeMount] = Field(
        default_factory=lambda: [
            VolumeMount(source="/var/run/docker.sock", target="/var/run/docker.sock"),
            VolumeMount(source="~/.openhands", target="/home/openhands/.openhands"),
        ],
    )
    extra_hosts: dict[str, str] = Field(
        default_factory=lambda: {"host.docker.internal": "host-gateway"},
    )
    pull_always: bool = Field(default=True, description="Pass --pull=always")
    detach: bool = Field(
        default=True,
        description="Run detached instead of attaching a TTY",
    )
    remove_on_exit: bool = Field(default=True, description="Pass --rm")
    runtime_binary: str = Field(default="docker", description="Container CLI")


class SessionConfig(BaseModel):
    """Session attachment configuration."""

    app_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the application",
    )
    github_token: str | None = Field(
        default=None,
        description="Token forwarded in the connection auth payload",
    )
    readiness_attempts: int = Field(default=15, ge=1, le=1000)
    readiness_delay: float = Field(default=2.0, ge=0.0, le=300.0)
    connect_attempts: int = Field(default=5, ge=1, le=1000)
    connect_delay: float = Field(default=2.0, ge=0.0, le=300.0)
    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=600.0,
        description="Per-request timeout in seconds",
    )
    send_upgrade_frame: bool = Field(
        default=True,
        description="Send the Engine.IO upgrade packet after the probe",
    )
    hidden_commands: bool = Field(
        default=False,
        description="Value of args.hidden in RUN envelopes",
    )

    @field_validator("app_url")
    @classmethod
    def _validate_app_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = "app_url must start with http:// or https://"
            raise ValueError(msg)
        return v.rstrip("/")


class ServerConfig(BaseModel):
    """HTTP front-end configuration."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5000, ge=0, le=65535, description="Bind port")
    mode: RelayMode = Field(default=RelayMode.SHELL, description="Relay mode")
    shell: str = Field(default="/bin/sh", description="Shell used by the executor")


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write JSON lines to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Top-level configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    container: ContainerConfig = Field(default_factory=ContainerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @model_validator(mode="after")
    def _validate_ports(self) -> Config:
        host_ports = {p.host_port for p in self.container.ports}
        if self.server.port and self.server.port in host_ports:
            msg = (
                f"Server port {self.server.port} collides with a published "
                "container port"
            )
            raise ValueError(msg)
        return self
