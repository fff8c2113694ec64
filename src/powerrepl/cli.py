"""Command-line interface for power-repl.

Provides the entry points for attaching to a running process and for
starting a host process that serves sessions until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="powerrepl",
        description="Attach an interactive Python session to a running process",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/powerrepl.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run a process that accepts sessions")
    serve_parser.add_argument(
        "endpoint", nargs="?", default=None,
        help="Socket path or host:port to listen on",
    )
    serve_parser.add_argument(
        "--port-file", action="store_true", default=None,
        help="Listen on a loopback port and record it in the socket path",
    )
    serve_parser.add_argument(
        "--no-mirror", action="store_true",
        help="Stop writing process output locally while sessions are attached",
    )

    connect_parser = subparsers.add_parser("connect", help="Attach to a running process")
    connect_parser.add_argument(
        "endpoint", nargs="?", default=None,
        help="Socket path or host:port to connect to",
    )
    connect_parser.add_argument("--prompt", type=str, default=None)
    connect_parser.add_argument("--history", type=Path, default=None, help="History file")
    connect_parser.add_argument("--history-size", type=int, default=None)
    connect_parser.add_argument(
        "--remove-history-duplicates", action="store_true", default=None,
    )
    connect_parser.add_argument(
        "--no-stdout", action="store_true", default=None,
        help="Do not receive the output of the attached process",
    )
    connect_parser.add_argument(
        "--timeout", type=float, default=None,
        help="Connect timeout in seconds (TCP only)",
    )

    return parser.parse_args(argv)


async def _serve(settings) -> None:
    """Serve sessions until the process is interrupted."""
    from powerrepl.server.output import default_router
    from powerrepl.server.server import serve

    config = settings.serve
    router = default_router()
    router.mirror_local = config.mirror_stdout
    server = await serve(config.endpoint, router=router, port_file=config.port_file)
    print(f"power-repl serving on {config.endpoint} (pid {os.getpid()})")
    async with server:
        await server.serve_forever()


def _connect_config(settings, args: argparse.Namespace):  # type: ignore[no-untyped-def]
    overrides = {
        "endpoint": args.endpoint,
        "prompt": args.prompt,
        "history": args.history,
        "history_size": args.history_size,
        "remove_history_duplicates": args.remove_history_duplicates,
        "no_stdout": args.no_stdout,
        "timeout": args.timeout,
    }
    return settings.connect.model_copy(
        update={k: v for k, v in overrides.items() if v is not None}
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the powerrepl CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from powerrepl.config.settings import load_settings
    from powerrepl.errors import TransportError
    from powerrepl.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        if args.endpoint:
            settings.serve.endpoint = args.endpoint
        if args.port_file:
            settings.serve.port_file = True
        if args.no_mirror:
            settings.serve.mirror_stdout = False
        logger.info("Starting server on %s", settings.serve.endpoint)
        try:
            asyncio.run(_serve(settings))
        except KeyboardInterrupt:
            pass
        except TransportError as e:
            logger.error("%s", e)
            sys.exit(1)

    elif args.command == "connect":
        from powerrepl.client.connection import attach

        config = _connect_config(settings, args)
        try:
            status = asyncio.run(attach(config))
        except TransportError as e:
            logger.error("%s", e)
            sys.exit(1)
        sys.exit(status)


if __name__ == "__main__":
    main()
