"""Interactive client loop backed by a remote session.

Lines typed at the local prompt are sent to the server; whatever the
server writes back is rendered verbatim, except for prompt echoes, which
drive the local prompt. ^C follows a two-stage protocol: the first press
arms an exit (or aborts a multi-line expression), the second one closes
the connection.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import sys
from typing import TextIO

from prompt_toolkit import PromptSession
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.patch_stdout import patch_stdout

from powerrepl.client.history import HistoryBuffer
from powerrepl.domain.models import (
    CONTINUATION_PROMPT,
    DEFAULT_PROMPT,
    ClientState,
    InterruptAction,
    InterruptState,
)
from powerrepl.errors import is_socket_reset_error

logger = logging.getLogger(__name__)

EXIT_HINT = "\n(To exit, press Ctrl+C again or Ctrl+D or type .exit)\n"
BREAK_COMMAND = b".break\n"
READ_SIZE = 4096


def correct_prompt_echo(chunk: bytes, prompt: str, current: str) -> tuple[bytes, str]:
    """Look for prompt echoes at the edges of an inbound chunk.

    Args:
        chunk: Bytes received from the server.
        prompt: The configured prompt.
        current: The prompt the local editor shows right now.

    Returns:
        The bytes to render and the prompt the editor should show. A
        chunk opening with two copies of the prompt loses one of them.
    """
    prompt_bytes = prompt.encode("utf-8")
    continuation = CONTINUATION_PROMPT.encode("utf-8")
    if prompt_bytes and chunk.startswith(prompt_bytes * 2):
        chunk, current = chunk[len(prompt_bytes) :], prompt
    elif chunk.startswith(continuation):
        current = CONTINUATION_PROMPT
    elif prompt_bytes and chunk.startswith(prompt_bytes):
        current = prompt

    # A prompt closing the chunk is the latest one the server wrote.
    if chunk.endswith(continuation):
        current = CONTINUATION_PROMPT
    elif prompt_bytes and chunk.endswith(prompt_bytes):
        current = prompt
    return chunk, current


class ClientLoop:
    """Local line editor wired to a connected session.

    Args:
        reader: Stream carrying session output.
        writer: Stream the typed lines are written to.
        prompt: The prompt configured for the session.
        history: History shared with the editor and saved on close.
        output: Where session output is rendered (sys.stdout by default).
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        prompt: str = DEFAULT_PROMPT,
        history: HistoryBuffer | None = None,
        output: TextIO | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._configured_prompt = prompt or DEFAULT_PROMPT
        self._history = history
        self._output = output
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._session: PromptSession[str] | None = None
        self.prompt = self._configured_prompt
        self.interrupts = InterruptState()
        self.state = ClientState.ACTIVE
        self.exit_status = 0

    @property
    def in_continuation(self) -> bool:
        return self.prompt == CONTINUATION_PROMPT

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------

    def submit(self, line: str) -> None:
        """Send a line typed by the user."""
        self.interrupts.reset()
        if self._history is not None and line.strip():
            self._history.add(line)
        self._writer.write((line + "\n").encode("utf-8"))

    def receive(self, chunk: bytes) -> None:
        """Render a chunk of session output."""
        data, self.prompt = correct_prompt_echo(chunk, self._configured_prompt, self.prompt)
        editing = self._session is not None and self._session.app.is_running
        echo = self.prompt.encode("utf-8")
        if editing and data.endswith(echo):
            # The editor draws the prompt itself.
            data = data[: -len(echo)]
        self._write(self._decoder.decode(data))
        if editing:
            self._session.app.invalidate()  # type: ignore[union-attr]

    def interrupt(self) -> InterruptAction:
        """Handle ^C."""
        action = self.interrupts.interrupt(self.in_continuation)
        if action is InterruptAction.CLOSE:
            self.close()
        elif action is InterruptAction.BREAK:
            self._write("\n")
            self._writer.write(BREAK_COMMAND)
        else:
            self._write(EXIT_HINT)
        return action

    def pause(self) -> None:
        """Handle ^Z and end of input: leave without confirmation."""
        self.close()

    def close(self) -> None:
        if not self._writer.is_closing():
            self._writer.close()

    async def finish(self, had_error: bool) -> int:
        """Flush history after the connection is gone; returns the exit status."""
        if self.state is ClientState.CLOSED:
            return self.exit_status
        self.state = ClientState.CLOSED
        self.exit_status = 1 if had_error else 0
        if self._history is not None:
            try:
                await self._history.save()
            except OSError as e:
                logger.error("Cannot save history to %s: %s", self._history.path, e)
        return self.exit_status

    # -------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------

    async def run(self) -> int:
        """Run until the connection closes. Returns the process exit status."""
        if self._history is not None:
            await self._history.load_file()

        self._session = PromptSession(
            history=self._history,
            key_bindings=self._key_bindings(),
        )
        with patch_stdout(raw=True):
            editor = asyncio.create_task(self._edit())
            try:
                had_error = await self._pump()
            finally:
                editor.cancel()
                await asyncio.gather(editor, return_exceptions=True)
        return await self.finish(had_error)

    async def _pump(self) -> bool:
        try:
            while True:
                chunk = await self._reader.read(READ_SIZE)
                if not chunk:
                    return False
                self.receive(chunk)
        except OSError as e:
            if not is_socket_reset_error(e):
                logger.error("Connection error: %s", e)
            return True

    async def _edit(self) -> None:
        assert self._session is not None
        while self.state is ClientState.ACTIVE and not self._writer.is_closing():
            try:
                line = await self._session.prompt_async(lambda: self.prompt)
            except KeyboardInterrupt:
                self.interrupt()
                continue
            except EOFError:
                self.pause()
                return
            self.submit(line)

    def _key_bindings(self) -> KeyBindings:
        bindings = KeyBindings()

        @bindings.add("c-z")
        def _suspend(event) -> None:  # type: ignore[no-untyped-def]
            event.app.exit(exception=EOFError())

        return bindings

    def _write(self, text: str) -> None:
        out = self._output or sys.stdout
        out.write(text)
        out.flush()
