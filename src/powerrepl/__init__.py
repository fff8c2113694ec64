"""power-repl -- attach an interactive Python session to a running process.

A host process calls ``serve()`` to accept sessions on a local socket;
an operator runs ``powerrepl connect`` (or ``attach()``) from another
terminal to inspect and change the host's live state.
"""

__version__ = "0.1.0"

from powerrepl.client.connection import attach, connect
from powerrepl.server.server import serve

__all__ = ["attach", "connect", "serve"]
