"""
=============================================================================
COMMAND-LINE ENTRY POINT
=============================================================================

    python -m respserver                          # In-memory store on :6389
    python -m respserver --port 7000
    python -m respserver --transport unix --path /tmp/app.sock
    python -m respserver --handler myapp.store:Store

--handler takes "memory" (the bundled MemoryHandler) or "module:attr".
If attr is a class it is instantiated without arguments.

=============================================================================
"""

import argparse
import importlib
import inspect
import logging
import sys
from typing import Any, List, Optional

from . import __version__
from .config import DEFAULT_PORT, DEFAULT_UNIX_PATH, ServerConfig
from .errors import ConfigurationError, ServerError
from .handlers import MemoryHandler
from .log import setup_logging
from .server import Server


logger = logging.getLogger("respserver")


def load_handler(spec: str) -> Any:
    """
    Resolve a --handler value.

    Raises:
        ConfigurationError: If the module or attribute cannot be found.
    """
    if spec == "memory":
        return MemoryHandler()

    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid handler {spec!r}, expected 'memory' or 'module:attr'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import handler module {module_name!r}: {e}") from e

    try:
        target = getattr(module, attr)
    except AttributeError as e:
        raise ConfigurationError(f"Module {module_name!r} has no attribute {attr!r}") from e

    return target() if inspect.isclass(target) else target


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="respserver",
        description="Redis-protocol command server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m respserver                              # In-memory store on 127.0.0.1:6389
  python -m respserver --host 0.0.0.0 --port 7000   # Listen on all interfaces
  python -m respserver --transport unix             # Unix socket at /tmp/redis.sock
  python -m respserver --handler myapp:Store        # Your own handler
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--transport", "-t",
        choices=["tcp", "unix"],
        default=None,
        help="Socket type (default: tcp)",
    )
    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help=f"TCP port (default: {DEFAULT_PORT}, 0 = any free port)",
    )
    parser.add_argument(
        "--path",
        default=None,
        help=f"Unix socket path (default: {DEFAULT_UNIX_PATH})",
    )

    # ─────────────────────────────────────────────────────────────────────
    # APPLICATION & PERFORMANCE
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--handler",
        default="memory",
        help="'memory' or 'module:attr' (default: memory)",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Maximum concurrent client sessions (default: 64)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Log output format (default: text)",
    )
    parser.add_argument(
        "--access-log",
        action="store_true",
        help="Log every executed command",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"respserver {__version__}",
    )

    return parser


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then command-line flags on top."""
    config = ServerConfig.from_env()

    if args.transport:
        config.with_transport(args.transport)

    if config.transport == "unix":
        if args.path:
            config.with_address(args.path)
    elif args.host:
        config.with_address(args.host)

    if args.port is not None:
        config.with_port(args.port)

    if args.workers is not None:
        config.max_workers = args.workers
        config.min_workers = min(config.min_workers, args.workers)

    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if args.access_log:
        config.access_log = True

    return config.with_handler(load_handler(args.handler))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args)
        setup_logging(config.log_level, config.log_format)
        server = Server(config)
        server.serve_forever()
    except ServerError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")

    return 0


if __name__ == "__main__":
    sys.exit(main())
