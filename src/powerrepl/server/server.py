"""Entry point for exposing a running process to remote sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from powerrepl.domain.models import Endpoint
from powerrepl.server.output import OutputRouter, default_router
from powerrepl.server.session import Session
from powerrepl.transport.resolver import start_listening

logger = logging.getLogger(__name__)


async def serve(
    endpoint: str | Endpoint,
    namespace: dict[str, Any] | None = None,
    router: OutputRouter | None = None,
    port_file: bool | None = None,
) -> asyncio.AbstractServer:
    """Start accepting power-repl sessions on ``endpoint``.

    Every accepted connection gets its own Session. Sessions evaluate code
    in ``namespace`` (the host's ``__main__`` globals by default), so state
    created in one line, or by one operator, is visible to the next.

    Args:
        endpoint: Socket path, ``host:port`` string or an Endpoint model.
        namespace: Globals shared by all sessions of this server.
        router: Output router to register sessions with. The process-wide
            router is used when omitted. Either way it is installed over
            sys.stdout and sys.stderr.
        port_file: Force (True) or forbid (False) the port-file indirection
            for socket paths. Detected from the platform when None.

    Returns:
        The listening asyncio server. Closing it stops new connections;
        live sessions end when their clients disconnect.

    Raises:
        TransportError: If the endpoint cannot be bound.
    """
    router = router or default_router()
    router.install()

    async def _on_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await Session(reader, writer, router, namespace).run()

    server = await start_listening(endpoint, _on_connection, port_file=port_file)
    logger.info("power-repl server ready")
    return server
