"""Tests for endpoint resolution and the port-file indirection."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import requires_unix_sockets
from powerrepl.domain.models import ListenOptions
from powerrepl.errors import TransportError
from powerrepl.transport.resolver import (
    PIPE_PREFIX,
    is_port_file,
    needs_port_file,
    open_connection,
    read_port_file,
    remove_stale,
    resolve_sock_path,
    start_listening,
    write_port_file,
)


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    data = await reader.read(100)
    writer.write(data)
    await writer.drain()
    writer.close()


class TestResolveSockPath:
    def test_noop_on_posix(self) -> None:
        assert resolve_sock_path("/tmp/repl.sock", platform="linux") == "/tmp/repl.sock"

    def test_prefix_on_windows(self) -> None:
        assert resolve_sock_path("repl", platform="win32") == PIPE_PREFIX + "repl"

    def test_already_prefixed(self) -> None:
        path = PIPE_PREFIX + "repl"
        assert resolve_sock_path(path, platform="win32") == path


class TestNeedsPortFile:
    def test_windows_needs_port_file(self) -> None:
        assert needs_port_file(platform="win32") is True

    def test_linux_binds_directly(self) -> None:
        assert needs_port_file(platform="linux") is False

    def test_override_wins(self) -> None:
        assert needs_port_file(True, platform="linux") is True
        assert needs_port_file(False, platform="win32") is False


class TestPortFile:
    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path: Path) -> None:
        path = str(tmp_path / "repl.sock")
        await write_port_file(path, 51234)
        assert Path(path).read_text(encoding="utf-8") == "51234"
        assert await read_port_file(path) == 51234

    @pytest.mark.asyncio
    async def test_garbage_port_file(self, tmp_path: Path) -> None:
        path = tmp_path / "repl.sock"
        path.write_text("not a port", encoding="utf-8")
        with pytest.raises(TransportError, match="does not contain a port"):
            await read_port_file(str(path))

    @pytest.mark.asyncio
    async def test_out_of_range_port(self, tmp_path: Path) -> None:
        path = tmp_path / "repl.sock"
        path.write_text("70000", encoding="utf-8")
        with pytest.raises(TransportError, match="invalid port"):
            await read_port_file(str(path))

    @pytest.mark.asyncio
    async def test_is_port_file(self, tmp_path: Path) -> None:
        path = tmp_path / "repl.sock"
        assert await is_port_file(str(path)) is False
        path.write_text("1", encoding="utf-8")
        assert await is_port_file(str(path)) is True
        assert await is_port_file(str(tmp_path)) is False

    @pytest.mark.asyncio
    async def test_remove_stale(self, tmp_path: Path) -> None:
        path = tmp_path / "repl.sock"
        assert await remove_stale(str(path)) is False
        path.write_text("stale", encoding="utf-8")
        assert await remove_stale(str(path)) is True
        assert not path.exists()


class TestStartListening:
    @pytest.mark.asyncio
    async def test_port_file_fallback(self, tmp_path: Path) -> None:
        path = str(tmp_path / "nested" / "repl.sock")
        server = await start_listening(path, _echo, port_file=True)
        async with server:
            text = Path(path).read_text(encoding="utf-8")
            assert text.isdigit()
            assert int(text) == server.sockets[0].getsockname()[1]

            reader, writer = await open_connection(path, timeout=5)
            writer.write(b"ping")
            await writer.drain()
            assert await reader.read(100) == b"ping"
            writer.close()

    @pytest.mark.asyncio
    async def test_listen_options_force_port_file(self, tmp_path: Path) -> None:
        path = str(tmp_path / "repl.sock")
        server = await start_listening(ListenOptions(path=path, port_file=True), _echo)
        async with server:
            assert await is_port_file(path)

    @pytest.mark.asyncio
    async def test_tcp_pass_through(self) -> None:
        server = await start_listening("127.0.0.1:0", _echo)
        async with server:
            port = server.sockets[0].getsockname()[1]
            reader, writer = await open_connection(f"127.0.0.1:{port}")
            writer.write(b"tcp")
            await writer.drain()
            assert await reader.read(100) == b"tcp"
            writer.close()

    @requires_unix_sockets
    @pytest.mark.asyncio
    async def test_unix_socket_replaces_stale_file(self, sock_path: str) -> None:
        Path(sock_path).write_text("left over from a previous run", encoding="utf-8")
        server = await start_listening(sock_path, _echo, port_file=False)
        async with server:
            assert not await is_port_file(sock_path)
            reader, writer = await open_connection(sock_path)
            writer.write(b"unix")
            await writer.drain()
            assert await reader.read(100) == b"unix"
            writer.close()

    @pytest.mark.asyncio
    async def test_unusable_directory_is_transport_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(TransportError):
            await start_listening(str(blocker / "repl.sock"), _echo, port_file=True)


class TestOpenConnection:
    @pytest.mark.asyncio
    async def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(TransportError):
            await open_connection(str(tmp_path / "nothing.sock"))

    @pytest.mark.asyncio
    async def test_stale_port_file(self, tmp_path: Path) -> None:
        server = await start_listening("127.0.0.1:0", _echo)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        path = tmp_path / "repl.sock"
        path.write_text(str(port), encoding="utf-8")
        with pytest.raises(TransportError):
            await open_connection(str(path), timeout=5)
