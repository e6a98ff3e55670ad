"""
config.py
=========
Command line / environment configuration for the dev server.
"""

import argparse
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from file_watcher import DEBOUNCE_WINDOW

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9090


class ConfigError(ValueError):
    """Invalid startup configuration."""


@dataclass(frozen=True)
class ServerConfig:
    root: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    debounce_window: float = DEBOUNCE_WINDOW
    log_level: str = "INFO"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tinyreload",
        description="Serve a directory and reload the browser when it changes.",
    )
    parser.add_argument("root", nargs="?", default=None,
                        help="directory to serve (default: $TINYRELOAD_ROOT or .)")
    parser.add_argument("--host", default=None,
                        help=f"listen address (default: {DEFAULT_HOST})")
    parser.add_argument("--port", type=int, default=None,
                        help=f"listen port (default: {DEFAULT_PORT})")
    parser.add_argument("--debounce", type=float, default=DEBOUNCE_WINDOW,
                        help="quiet period in seconds before browsers are notified")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def validate_root(root) -> Path:
    path = Path(root).expanduser()
    if not path.exists():
        raise ConfigError(f"root directory does not exist: {path}")
    if not path.is_dir():
        raise ConfigError(f"root is not a directory: {path}")
    return path.resolve()


def load_config(argv=None, environ=None) -> ServerConfig:
    """Parse ``argv`` with environment fallbacks; raises ConfigError."""
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    root = args.root or environ.get("TINYRELOAD_ROOT") or "."
    host = args.host or environ.get("TINYRELOAD_HOST") or DEFAULT_HOST

    port = args.port
    if port is None:
        raw = environ.get("TINYRELOAD_PORT")
        try:
            port = int(raw) if raw else DEFAULT_PORT
        except ValueError:
            raise ConfigError(f"TINYRELOAD_PORT is not a number: {raw!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"port out of range: {port}")

    if args.debounce <= 0:
        raise ConfigError(f"debounce window must be positive: {args.debounce}")

    config = ServerConfig(
        root=validate_root(root),
        host=host,
        port=port,
        debounce_window=args.debounce,
        log_level=args.log_level,
    )
    logging.getLogger(__name__).debug("loaded %s", config)
    return config
