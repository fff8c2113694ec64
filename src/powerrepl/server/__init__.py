"""Server side of power-repl.

Accepts connections, performs the handshake, and runs one evaluation
session per connection against the host process's live namespace.
"""

from powerrepl.server.output import OutputRouter
from powerrepl.server.server import serve

__all__ = ["OutputRouter", "serve"]
