"""
Command line entry point: staticserve PATH [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from .config import DEFAULT_HOST, DEFAULT_PORT, configure_logging, load_settings
from .errors import AddressError, BindError, ConfigurationError, TargetError
from .middleware import log_access
from .routes import build_app
from .server import FileServer
from .target import ServeTarget


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="staticserve",
        description="Serve a directory or a single file over HTTP with client caching disabled.",
    )
    parser.add_argument("path", nargs="?", help="directory or file to serve")
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"host to serve content (default: {DEFAULT_HOST})")
    parser.add_argument("--port", default=DEFAULT_PORT, help=f"port to serve content (default: {DEFAULT_PORT})")
    parser.add_argument("--quiet", action="store_true", help="do not log served requests")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.path:
        print("A path to a directory or a file is required!", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    try:
        settings = load_settings(host=args.host, port=args.port, access_log=not args.quiet)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    configure_logging()

    try:
        address = settings.bind_address().resolve()
    except AddressError as e:
        print(f"Cannot resolve tcp address: {e}", file=sys.stderr)
        return 1

    try:
        target = ServeTarget.resolve(args.path)
    except TargetError as e:
        print(e, file=sys.stderr)
        return 1

    app = build_app(target, sink=log_access if settings.access_log else None)
    server = FileServer(app, address, settings)
    try:
        server.listen()
    except BindError as e:
        print(e, file=sys.stderr)
        return 1

    return asyncio.run(server.run())
