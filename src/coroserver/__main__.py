"""
=============================================================================
COROSERVER CLI ENTRY POINT
=============================================================================

USAGE
─────

    # Line echo server on the default port
    python -m coroserver

    # A handler from a script (function on_connect, optional `port` global)
    python -m coroserver scripts/chat.py

    # A handler from an importable module
    python -m coroserver myapp.handlers:serve --port 7007

    # Drop connections that go quiet for 30 seconds
    python -m coroserver greeter --idle-timeout 30

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import LOG_FORMATS, ServerConfig
from .core import MultiplexerError
from .handlers import load_handler, module_port
from .server import CoroutineServer


logger = logging.getLogger("coroserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coroserver",
        description="Single-threaded TCP server running one generator handler per connection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m coroserver                          # Line echo server
  python -m coroserver hello_ok --port 7007     # Built-in handler
  python -m coroserver scripts/chat.py          # Handler script
  python -m coroserver myapp.handlers:serve     # Handler module
        """
    )

    parser.add_argument(
        "handler",
        nargs="?",
        default="echo_lines",
        help="Handler: built-in name, module:function, or script.py[:function] "
             "(default: echo_lines)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Address to bind to (default: :: for IPv4+IPv6)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: handler's `port`, else 8080)"
    )

    parser.add_argument(
        "--max-connections", "-c",
        type=int,
        default=None,
        help="Simultaneous connections before new ones are refused (default: 30)"
    )

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Close connections idle for this many seconds (default: never)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=None,
        help="Access log format (default: text)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"coroserver {__version__}"
    )

    return parser


def build_config(args: argparse.Namespace, handler_port=None) -> ServerConfig:
    """Layer CLI arguments over the environment over the defaults."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    elif handler_port is not None:
        config.port = handler_port
    if args.max_connections is not None:
        config.max_connections = args.max_connections
    if args.idle_timeout is not None:
        config.idle_timeout = args.idle_timeout
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format

    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        handler, module = load_handler(args.handler)
    except (ImportError, AttributeError, TypeError) as e:
        print(f"coroserver: cannot load handler {args.handler!r}: {e}", file=sys.stderr)
        return 1

    try:
        config = build_config(args, module_port(module))
        server = CoroutineServer(handler, config)
    except (ValueError, TypeError) as e:
        print(f"coroserver: invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        server.run()
    except OSError as e:
        logger.error(f"Could not start server: {e}")
        return 1
    except MultiplexerError:
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
