"""Logging setup for power-repl.

A serving process replaces sys.stdout and sys.stderr with streams that
copy everything to attached sessions. Log records must not take that
path: an operator would see the server's own bookkeeping interleaved
with their results, and a record about a failing session would be
written back into that session. Handlers are therefore bound to the
interpreter's original stderr.
"""

from __future__ import annotations

import logging
import sys

from powerrepl.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach handlers to the 'powerrepl' logger.

    Records go to ``sys.__stderr__`` (falling back to the current stderr
    when the interpreter has none, e.g. under pythonw) and, if configured,
    to a file.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    package_logger = logging.getLogger("powerrepl")
    package_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    formatter = logging.Formatter(config.format)

    # Original stderr, not the router-wrapped one
    console_handler = logging.StreamHandler(sys.__stderr__ or sys.stderr)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    # File handler (optional)
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    package_logger.debug("Logging initialized at %s level", config.level)
