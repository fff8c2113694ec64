"""Endpoint resolution for servers and clients.

Turns an Endpoint into something asyncio can listen on or connect to.
Socket paths are bound directly where the platform supports it; where it
does not (or where a subordinate worker process is told not to), the
server listens on an ephemeral loopback port and records that port in a
regular file at the requested path. A client that finds a regular file at
the path reads the port back and connects over loopback TCP instead.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import stat
import sys
from pathlib import Path
from typing import Awaitable, Callable

from powerrepl.domain.models import (
    Endpoint,
    ListenOptions,
    PathEndpoint,
    TcpEndpoint,
    parse_endpoint,
)
from powerrepl.errors import TransportError

logger = logging.getLogger(__name__)

PIPE_PREFIX = "\\\\.\\pipe\\"
LOOPBACK = "127.0.0.1"

ConnectionHandler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


def resolve_sock_path(path: str, platform: str | None = None) -> str:
    """Prefix a socket path with the named-pipe namespace on Windows."""
    platform = platform or sys.platform
    if platform != "win32" or path.startswith(PIPE_PREFIX):
        return path
    return PIPE_PREFIX + path


def needs_port_file(override: bool | None = None, platform: str | None = None) -> bool:
    """Whether socket paths must go through the port-file indirection."""
    if override is not None:
        return override
    platform = platform or sys.platform
    return platform == "win32" or not hasattr(socket, "AF_UNIX")


async def _run_io(func: Callable[[], object]) -> object:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)


async def ensure_parent_dir(path: str) -> None:
    """Create the directory that will contain ``path`` if it is missing."""
    parent = Path(path).parent
    await _run_io(lambda: parent.mkdir(parents=True, exist_ok=True))


async def remove_stale(path: str) -> bool:
    """Delete a leftover socket or port file from a previous run."""

    def _remove() -> bool:
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        return True

    removed = bool(await _run_io(_remove))
    if removed:
        logger.debug("Removed stale socket path %s", path)
    return removed


async def write_port_file(path: str, port: int) -> None:
    """Record a listening port as decimal UTF-8 text at ``path``."""
    await _run_io(lambda: Path(path).write_text(str(port), encoding="utf-8"))


async def read_port_file(path: str) -> int:
    """Read back a port written by write_port_file()."""
    text = str(await _run_io(lambda: Path(path).read_text(encoding="utf-8")))
    try:
        port = int(text.strip())
    except ValueError as e:
        raise TransportError(f"Port file {path} does not contain a port: {text!r}", path) from e
    if not 0 < port <= 65535:
        raise TransportError(f"Port file {path} holds an invalid port: {port}", path)
    return port


async def is_port_file(path: str) -> bool:
    """True if ``path`` names a regular file rather than a socket or pipe."""

    def _check() -> bool:
        try:
            return stat.S_ISREG(os.stat(path).st_mode)
        except OSError:
            return False

    return bool(await _run_io(_check))


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


async def start_listening(
    endpoint: str | Endpoint,
    handler: ConnectionHandler,
    port_file: bool | None = None,
) -> asyncio.AbstractServer:
    """Bind ``endpoint`` and serve every accepted connection with ``handler``.

    Raises:
        TransportError: If the path cannot be prepared or the bind fails.
    """
    endpoint = parse_endpoint(endpoint)
    backlog = 100
    if isinstance(endpoint, ListenOptions):
        backlog = endpoint.backlog
        if endpoint.port_file is not None:
            port_file = endpoint.port_file
        if endpoint.port is not None:
            endpoint = TcpEndpoint(host=endpoint.host, port=endpoint.port)
        else:
            endpoint = PathEndpoint(path=endpoint.path or "")

    try:
        if isinstance(endpoint, TcpEndpoint):
            server = await asyncio.start_server(
                handler, endpoint.host, endpoint.port, backlog=backlog
            )
            logger.info("Listening on %s:%d", endpoint.host, _bound_port(server))
            return server

        path = endpoint.path
        await ensure_parent_dir(path)
        await remove_stale(path)

        if needs_port_file(port_file):
            server = await asyncio.start_server(handler, LOOPBACK, 0, backlog=backlog)
            port = _bound_port(server)
            try:
                await write_port_file(path, port)
            except OSError:
                server.close()
                raise
            logger.info("Listening on %s:%d (port recorded in %s)", LOOPBACK, port, path)
            return server

        if not hasattr(asyncio, "start_unix_server"):
            raise TransportError(
                f"Socket paths are not supported on {sys.platform}; enable port_file", path
            )
        resolved = resolve_sock_path(path)
        server = await asyncio.start_unix_server(handler, path=resolved, backlog=backlog)
        logger.info("Listening on %s", resolved)
        return server
    except OSError as e:
        raise TransportError(f"Cannot listen on {endpoint}: {e}", str(endpoint)) from e


def _bound_port(server: asyncio.AbstractServer) -> int:
    sockets = getattr(server, "sockets", None) or []
    return int(sockets[0].getsockname()[1]) if sockets else 0


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


async def open_connection(
    endpoint: str | Endpoint,
    timeout: float | None = None,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Connect to a server started with start_listening().

    ``timeout`` bounds TCP connects, including the port-file fallback.

    Raises:
        TransportError: If the endpoint cannot be resolved or reached.
    """
    endpoint = parse_endpoint(endpoint)
    if isinstance(endpoint, ListenOptions):
        if endpoint.port is not None:
            endpoint = TcpEndpoint(host=endpoint.host, port=endpoint.port)
        else:
            endpoint = PathEndpoint(path=endpoint.path or "")

    try:
        if isinstance(endpoint, TcpEndpoint):
            return await _open_tcp(endpoint.host, endpoint.port, timeout)

        path = endpoint.path
        if await is_port_file(path):
            port = await read_port_file(path)
            logger.debug("Found port file %s -> %s:%d", path, LOOPBACK, port)
            return await _open_tcp(LOOPBACK, port, timeout)

        if not hasattr(asyncio, "open_unix_connection"):
            raise TransportError(f"No server found at {path}", path)
        return await asyncio.open_unix_connection(resolve_sock_path(path))
    except asyncio.TimeoutError as e:
        raise TransportError(f"Timed out connecting to {endpoint}", str(endpoint)) from e
    except OSError as e:
        raise TransportError(f"Cannot connect to {endpoint}: {e}", str(endpoint)) from e


async def _open_tcp(
    host: str, port: int, timeout: float | None
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
