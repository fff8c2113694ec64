"""Exception hierarchy for power-repl."""

from __future__ import annotations


class PowerReplError(Exception):
    """Base class for errors raised by power-repl."""


class TransportError(PowerReplError):
    """Raised when an endpoint cannot be bound, connected or resolved."""

    def __init__(self, message: str, endpoint: str = "") -> None:
        super().__init__(message)
        self.endpoint = endpoint


class HandshakeError(PowerReplError):
    """Raised when the first frame of a connection is not a valid handshake."""


def is_socket_reset_error(exc: BaseException) -> bool:
    """True for errors raised when the peer went away mid-write."""
    return isinstance(exc, (ConnectionResetError, BrokenPipeError, ConnectionAbortedError))
