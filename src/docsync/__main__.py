#!/usr/bin/env python3
"""
docsync replication server - entry point for python -m docsync
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .utils.config import load_config
from .utils.errors import ConfigurationError
from .utils.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsync-server",
        description="Checkpoint-based document replication server",
    )
    parser.add_argument("--config", action="append", type=Path, default=[],
                        help="Configuration file (JSON, YAML or TOML); repeatable")
    parser.add_argument("--host", help="Interface to bind")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument("--db", type=Path, help="SQLite database path")
    parser.add_argument("--memory", action="store_true",
                        help="Keep documents in memory instead of SQLite")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Command line flags, shaped like a configuration source."""
    overrides: dict = {}
    if args.host:
        overrides.setdefault("server", {})["host"] = args.host
    if args.port:
        overrides.setdefault("server", {})["port"] = args.port
    if args.db:
        overrides.setdefault("database", {})["path"] = args.db
    if args.memory:
        overrides.setdefault("replication", {})["store"] = "memory"
    if args.log_level:
        overrides.setdefault("logging", {})["level"] = args.log_level
    return overrides


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for python -m docsync"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, overrides_from_args(args))
    except ConfigurationError as e:
        print(f"docsync configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    setup_logging(
        app_name=config.app_name,
        log_level=config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )

    from .server import run
    try:
        run(config)
    except KeyboardInterrupt:
        print("\ndocsync server stopped by user", file=sys.stderr)


if __name__ == "__main__":
    main()
