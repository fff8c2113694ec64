"""Server-side session bound to one accepted connection.

A session waits for exactly one data frame, treats it as the handshake,
and then evaluates every newline-terminated line the client sends. It
owns an EvalContext and, unless the client opted out, is attached to the
OutputRouter so it also receives the host process's own output.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from powerrepl.domain.models import HandshakeFrame, SessionState
from powerrepl.errors import HandshakeError, is_socket_reset_error
from powerrepl.server.evaluator import EvalContext
from powerrepl.server.output import OutputRouter, current_session

logger = logging.getLogger(__name__)

# Upper bound on the size of the handshake frame
HANDSHAKE_LIMIT = 64 * 1024

LINE_TOO_LONG = "Input line is too long and was discarded\n"

HELP_TEXT = """\
.break    Abort the expression being entered
.clear    Alias for .break
.exit     Close this session
.help     Show this help
"""


class Session:
    """One remote evaluation session.

    Usage::

        session = Session(reader, writer, router, namespace)
        await session.run()   # returns once the connection is closed
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        router: OutputRouter,
        namespace: dict[str, Any] | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._router = router
        self._namespace = namespace
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self.state = SessionState.AWAITING_HANDSHAKE
        self.handshake: HandshakeFrame | None = None
        self.context: EvalContext | None = None
        self.registered = False

    def __repr__(self) -> str:
        peer = self._writer.get_extra_info("peername") or self._writer.get_extra_info("sockname")
        return f"<Session {peer!r} {self.state.value}>"

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    async def run(self) -> None:
        """Drive the session until the connection closes."""
        try:
            try:
                frame = await self._reader.read(HANDSHAKE_LIMIT)
                self._accept_handshake(frame)
            except HandshakeError as e:
                logger.info("Dropping connection: %s", e)
                self._abort()
                return

            await self._send(self.context.current_prompt)  # type: ignore[union-attr]
            while self.state is SessionState.ACTIVE:
                line = await self._read_line()
                if line is None:
                    await self._reject_long_line()
                    continue
                if not line:
                    break
                await self._handle_line(line.decode("utf-8", errors="replace").rstrip("\r\n"))
        except Exception as e:
            self.handle_error(e)
        finally:
            self.close()

    def _accept_handshake(self, frame: bytes) -> None:
        if not frame:
            raise HandshakeError("connection closed before handshake")
        try:
            handshake = HandshakeFrame.decode(frame)
        except ValueError as e:
            raise HandshakeError(f"malformed handshake frame: {frame[:80]!r}") from e

        self.handshake = handshake
        self.context = EvalContext(namespace=self._namespace, prompt=handshake.prompt)
        self.state = SessionState.ACTIVE
        if not handshake.no_stdout:
            self._router.attach(self)
            self.registered = True
        logger.info("Session started %r (stdout=%s)", self, not handshake.no_stdout)

    async def _read_line(self) -> bytes | None:
        """Next line, b"" at end of input, or None for a dropped overlong line."""
        try:
            return await self._reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError as e:
            overrun = e.consumed

        # The overlong bytes stay buffered; skip them up to the next newline.
        while True:
            await self._reader.readexactly(overrun)
            try:
                await self._reader.readuntil(b"\n")
            except asyncio.LimitOverrunError as e:
                overrun = e.consumed
                continue
            except asyncio.IncompleteReadError:
                return b""
            return None

    async def _reject_long_line(self) -> None:
        context = self.context
        assert context is not None
        logger.warning("Dropped an overlong line from %r", self)
        context.reset_buffer()
        await self._send(LINE_TOO_LONG)
        await self._send(context.current_prompt)

    async def _handle_line(self, line: str) -> None:
        context = self.context
        assert context is not None

        command = line.strip()
        if command == ".exit":
            self.close()
            return
        if command in (".break", ".clear"):
            context.reset_buffer()
        elif command == ".help" and not context.in_continuation:
            await self._send(HELP_TEXT)
        else:
            token = current_session.set(self)
            try:
                result = await context.feed(line)
            finally:
                current_session.reset(token)
            if result.exit_requested:
                self.close()
                return
            if result.output:
                await self._send(result.output)

        await self._send(context.current_prompt)

    # -------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------

    def send_output(self, text: str) -> None:
        """Queue ``text`` for the client. Safe to call from any thread."""
        if threading.get_ident() != self._loop_thread:
            self._loop.call_soon_threadsafe(self.send_output, text)
            return
        if self.is_closed or self._writer.is_closing():
            return
        self._writer.write(text.encode("utf-8", errors="replace"))

    async def _send(self, text: str) -> None:
        self.send_output(text)
        if not self._writer.is_closing():
            await self._writer.drain()

    def handle_error(self, exc: BaseException) -> None:
        """Error handler for this session's socket."""
        if is_socket_reset_error(exc):
            logger.debug("Peer of %r went away: %s", self, exc)
        else:
            logger.error("Session %r failed: %s", self, exc, exc_info=exc)
        self.close()

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------

    def close(self) -> None:
        """Detach from the router and close the connection. Idempotent."""
        self._router.detach(self)
        self.registered = False
        if self.state is SessionState.CLOSED:
            return
        was_active = self.state is SessionState.ACTIVE
        self.state = SessionState.CLOSED
        self.context = None
        if not self._writer.is_closing():
            self._writer.close()
        if was_active:
            logger.info("Session closed %r", self)

    def _abort(self) -> None:
        self.state = SessionState.CLOSED
        self._writer.transport.abort()
