"""Persistent line history for the client.

The editor (prompt_toolkit) keeps history most-recent-first, while the
file on disk is written oldest-first so it reads top to bottom like a
shell history file. Lines are collected in memory during a connection
and the file is overwritten once, when the connection closes.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable

from prompt_toolkit.history import History

from powerrepl.domain.models import DEFAULT_HISTORY_NAME, DEFAULT_HISTORY_SIZE

logger = logging.getLogger(__name__)


def default_history_path() -> Path:
    return Path.cwd() / DEFAULT_HISTORY_NAME


class HistoryBuffer(History):
    """Line history owned by the client loop and shared with the editor.

    Args:
        path: History file. Defaults to ``.power_repl_history`` in the
              current working directory.
        size: Maximum number of entries kept.
        remove_duplicates: Drop an older entry when the same line is
              submitted again.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        size: int = DEFAULT_HISTORY_SIZE,
        remove_duplicates: bool = False,
    ) -> None:
        super().__init__()
        self.path = Path(path) if path else default_history_path()
        self.size = size
        self.remove_duplicates = remove_duplicates
        # Most recent first
        self._entries: list[str] = []

    @property
    def entries(self) -> list[str]:
        """History oldest-first, the order it is written to disk."""
        return list(reversed(self._entries))

    def read(self) -> list[str]:
        """Merge the history file into memory. A missing file is empty history."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No history file at %s", self.path)
            return []

        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        for line in lines:
            self.add(line)
        logger.debug("Loaded %d history lines from %s", len(lines), self.path)
        return lines

    async def load_file(self) -> list[str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.read)

    def add(self, line: str) -> None:
        """Record a submitted line as the most recent entry."""
        if self.remove_duplicates and line in self._entries:
            self._entries.remove(line)
        self._entries.insert(0, line)
        del self._entries[self.size :]

    def write(self) -> None:
        """Overwrite the history file, oldest entry first."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n".join(self.entries), encoding="utf-8")
        logger.debug("Saved %d history lines to %s", len(self._entries), self.path)

    async def save(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.write)

    # -------------------------------------------------------------------
    # prompt_toolkit History interface
    # -------------------------------------------------------------------

    def load_history_strings(self) -> Iterable[str]:
        return list(self._entries)

    def store_string(self, string: str) -> None:
        # Lines are recorded by ClientLoop.submit() before the editor sees them.
        pass
