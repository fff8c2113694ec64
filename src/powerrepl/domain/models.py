"""Core domain models for the power-repl system.

These models represent the data flowing between the two ends of a
connection: the endpoint a server listens on (and a client connects to),
the handshake frame that opens every session, and the small state
machines that drive the server session and the client loop.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_PROMPT = "> "
CONTINUATION_PROMPT = "... "
DEFAULT_HISTORY_SIZE = 100
DEFAULT_HISTORY_NAME = ".power_repl_history"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    """Lifecycle of a server-side session."""

    AWAITING_HANDSHAKE = "awaiting_handshake"
    ACTIVE = "active"
    CLOSED = "closed"


class ClientState(str, enum.Enum):
    """Lifecycle of the client loop."""

    ACTIVE = "active"
    CLOSED = "closed"


class InterruptAction(str, enum.Enum):
    """What the client loop does in response to an interrupt signal."""

    ARM = "arm"  # First ^C: print a hint and wait for a second one
    BREAK = "break"  # ^C during multi-line input: abort the pending expression
    CLOSE = "close"  # Second ^C: terminate the connection


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class PathEndpoint(BaseModel):
    """A filesystem-path socket (Unix socket, named pipe or port file)."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1, description="Socket path on the filesystem")


class TcpEndpoint(BaseModel):
    """A plain host + port TCP endpoint."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="127.0.0.1")
    port: int = Field(ge=0, le=65535)


class ListenOptions(BaseModel):
    """Structured listen options, mirroring what a server may be given.

    Either ``path`` or ``port`` must be set, never both.
    """

    model_config = ConfigDict(frozen=True)

    path: str | None = Field(default=None)
    host: str = Field(default="127.0.0.1")
    port: int | None = Field(default=None, ge=0, le=65535)
    backlog: int = Field(default=100, gt=0)
    port_file: bool | None = Field(
        default=None,
        description="Force (True) or forbid (False) the port-file indirection",
    )

    @model_validator(mode="after")
    def _exactly_one_target(self) -> ListenOptions:
        if (self.path is None) == (self.port is None):
            raise ValueError("ListenOptions requires exactly one of 'path' or 'port'")
        return self


Endpoint = Union[PathEndpoint, TcpEndpoint, ListenOptions]


def parse_endpoint(value: str | Endpoint) -> Endpoint:
    """Coerce a user supplied endpoint into one of the Endpoint variants.

    A ``host:port`` string with a numeric port becomes a TcpEndpoint,
    a bare number becomes a loopback TcpEndpoint, anything else is taken
    as a socket path.
    """
    if isinstance(value, (PathEndpoint, TcpEndpoint, ListenOptions)):
        return value
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid endpoint: {value!r}")
    if value.isdigit():
        return TcpEndpoint(port=int(value))
    host, sep, port = value.rpartition(":")
    if sep and host and port.isdigit() and "/" not in host and "\\" not in host:
        return TcpEndpoint(host=host, port=int(port))
    return PathEndpoint(path=value)


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class HandshakeFrame(BaseModel):
    """The single configuration message a client sends right after connecting.

    Field names travel in camelCase on the wire so the frame stays
    compatible with other power-repl clients.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prompt: str | None = Field(default=None)
    no_stdout: bool = Field(default=False, alias="noStdout")
    history: str | None = Field(default=None)
    history_size: int | None = Field(default=None, alias="historySize", ge=0)
    timeout: float | None = Field(default=None, gt=0)
    remove_history_duplicates: bool | None = Field(
        default=None, alias="removeHistoryDuplicates"
    )

    def encode(self) -> bytes:
        """Serialize to the UTF-8 JSON wire form."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> HandshakeFrame:
        """Parse a first frame; raises ValueError if it is not a JSON object."""
        return cls.model_validate_json(data)


# ---------------------------------------------------------------------------
# Client interrupt state
# ---------------------------------------------------------------------------


@dataclass
class InterruptState:
    """Two-stage ^C guard of the client loop."""

    armed: bool = False

    def reset(self) -> None:
        self.armed = False

    def interrupt(self, in_continuation: bool) -> InterruptAction:
        if self.armed:
            return InterruptAction.CLOSE
        if in_continuation:
            return InterruptAction.BREAK
        self.armed = True
        return InterruptAction.ARM
