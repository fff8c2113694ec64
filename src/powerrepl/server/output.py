"""Process-wide output fanout to connected sessions.

While sessions are attached, everything the host process writes to its
standard output and standard error is copied to each of them, so an
operator sees the live output of the process they are attached to.
Output produced by a session's own evaluation is routed back to that
session only.
"""

from __future__ import annotations

import contextvars
import io
import logging
import sys
import threading
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)

#: The session whose code is currently being evaluated, if any.
current_session: contextvars.ContextVar[OutputTarget | None] = contextvars.ContextVar(
    "powerrepl_current_session", default=None
)


class OutputTarget(Protocol):
    """What the router needs from a session."""

    @property
    def is_closed(self) -> bool: ...

    def send_output(self, text: str) -> None: ...

    def handle_error(self, exc: BaseException) -> None: ...


class FanoutStream(io.TextIOBase):
    """A text stream that forwards writes through an OutputRouter."""

    def __init__(self, router: OutputRouter, local: TextIO) -> None:
        super().__init__()
        self._router = router
        self._local = local

    @property
    def local(self) -> TextIO:
        return self._local

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self._local, "encoding", None) or "utf-8"

    @property
    def errors(self) -> str | None:  # type: ignore[override]
        return getattr(self._local, "errors", None)

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return self._local.isatty()

    def fileno(self) -> int:
        return self._local.fileno()

    def write(self, text: str) -> int:  # type: ignore[override]
        return self._router.dispatch(text, self._local)

    def flush(self) -> None:
        self._local.flush()


class OutputRouter:
    """Registration set of sessions plus the stdout/stderr interceptor.

    Usage::

        router = OutputRouter()
        router.install()
        router.attach(session)   # session now receives process output
        router.detach(session)

    Args:
        mirror_local: Keep writing to the local terminal while sessions
            are attached. When False, attached sessions replace it.
    """

    def __init__(self, mirror_local: bool = True) -> None:
        self.mirror_local = mirror_local
        self._sessions: set[OutputTarget] = set()
        self._originals: tuple[TextIO, TextIO] | None = None
        self._dispatching = threading.local()

    @property
    def sessions(self) -> frozenset[OutputTarget]:
        return frozenset(self._sessions)

    @property
    def installed(self) -> bool:
        return self._originals is not None

    def attach(self, session: OutputTarget) -> None:
        self._sessions.add(session)
        logger.debug("Attached session %r (%d active)", session, len(self._sessions))

    def detach(self, session: OutputTarget) -> None:
        if session in self._sessions:
            self._sessions.discard(session)
            logger.debug("Detached session %r (%d active)", session, len(self._sessions))

    def install(self) -> None:
        """Wrap sys.stdout and sys.stderr; calling it again is a no-op."""
        if self._originals is not None:
            return
        self._originals = (sys.stdout, sys.stderr)
        sys.stdout = FanoutStream(self, sys.stdout)
        sys.stderr = FanoutStream(self, sys.stderr)
        logger.debug("Output router installed")

    def uninstall(self) -> None:
        """Restore the streams replaced by install()."""
        if self._originals is None:
            return
        sys.stdout, sys.stderr = self._originals
        self._originals = None
        logger.debug("Output router uninstalled")

    def dispatch(self, text: str, local: TextIO) -> int:
        """Deliver one write. Returns what the local write returned."""
        if getattr(self._dispatching, "active", False):
            return local.write(text)

        self._dispatching.active = True
        try:
            # Tasks started by a line keep its session as owner after it closes.
            owner = current_session.get()
            if owner is not None and not owner.is_closed:
                self._deliver(owner, text)
                return len(text)

            result = local.write(text) if self.mirror_local or not self._sessions else len(text)
            for session in list(self._sessions):
                self._deliver(session, text)
            return result
        finally:
            self._dispatching.active = False

    @staticmethod
    def _deliver(session: OutputTarget, text: str) -> None:
        try:
            session.send_output(text)
        except OSError as e:
            session.handle_error(e)


_default_router: OutputRouter | None = None


def default_router() -> OutputRouter:
    """The process-wide router shared by every server in this process."""
    global _default_router
    if _default_router is None:
        _default_router = OutputRouter()
    return _default_router
