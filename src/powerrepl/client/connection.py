"""Connecting to a power-repl server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TextIO

from powerrepl.client.history import HistoryBuffer
from powerrepl.client.loop import ClientLoop
from powerrepl.config.settings import ConnectConfig
from powerrepl.errors import TransportError
from powerrepl.transport.resolver import open_connection

logger = logging.getLogger(__name__)


@dataclass
class ClientConnection:
    """An established connection whose handshake has been sent."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    config: ConnectConfig

    def create_loop(self, output: TextIO | None = None) -> ClientLoop:
        history = HistoryBuffer(
            path=self.config.history,
            size=self.config.history_size,
            remove_duplicates=self.config.remove_history_duplicates,
        )
        return ClientLoop(
            self.reader,
            self.writer,
            prompt=self.config.prompt,
            history=history,
            output=output,
        )


async def connect(config: ConnectConfig | str) -> ClientConnection:
    """Connect to a server and send the handshake frame.

    Args:
        config: Connection options, or just an endpoint string.

    Raises:
        TransportError: If the server cannot be reached or the handshake
            cannot be written.
    """
    if isinstance(config, str):
        config = ConnectConfig(endpoint=config)

    reader, writer = await open_connection(config.endpoint, timeout=config.timeout)
    try:
        writer.write(config.handshake().encode())
        await writer.drain()
    except OSError as e:
        writer.close()
        raise TransportError(f"Handshake with {config.endpoint} failed: {e}", config.endpoint) from e

    logger.debug("Connected to %s", config.endpoint)
    return ClientConnection(reader, writer, config)


async def attach(config: ConnectConfig | str) -> int:
    """Connect and run an interactive session. Returns the exit status."""
    connection = await connect(config)
    return await connection.create_loop().run()
