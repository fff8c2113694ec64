"""Shared test fixtures for the power-repl test suite.

Provides output routers that are torn down after each test, short socket
paths (Unix socket paths are limited to ~100 bytes), and helpers for
talking to a live server.
"""

from __future__ import annotations

import asyncio
import shutil
import socket
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from powerrepl.server.output import OutputRouter

requires_unix_sockets = pytest.mark.skipif(
    not hasattr(socket, "AF_UNIX"), reason="Unix domain sockets not available"
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def router() -> Iterator[OutputRouter]:
    """An OutputRouter that restores sys.stdout/sys.stderr afterwards."""
    r = OutputRouter()
    yield r
    r.uninstall()


@pytest.fixture
def namespace() -> dict[str, Any]:
    """An isolated namespace so tests do not touch __main__."""
    return {"__name__": "__powerrepl_test__"}


@pytest.fixture
def short_tmp() -> Iterator[Path]:
    path = Path(tempfile.mkdtemp(prefix="prepl"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def sock_path(short_tmp: Path) -> str:
    return str(short_tmp / "repl.sock")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def read_until(reader: asyncio.StreamReader, suffix: bytes, timeout: float = 5.0) -> bytes:
    """Read from ``reader`` until the data ends with ``suffix`` or EOF."""
    data = b""
    while not data.endswith(suffix):
        chunk = await asyncio.wait_for(reader.read(4096), timeout)
        if not chunk:
            break
        data += chunk
    return data


async def read_to_eof(reader: asyncio.StreamReader, timeout: float = 5.0) -> bytes:
    data = b""
    try:
        while True:
            chunk = await asyncio.wait_for(reader.read(4096), timeout)
            if not chunk:
                return data
            data += chunk
    except ConnectionResetError:
        return data


async def wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``condition`` until it holds or ``timeout`` expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True
