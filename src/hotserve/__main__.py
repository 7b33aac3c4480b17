"""Command-line entry point for the live-reload development server."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .app import LiveReloadServer
from .config import ConfigError, apply_overrides, load_config
from .monitor import MonitorError


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve a directory and reload browsers when it changes")
    parser.add_argument(
        "--addr",
        default=None,
        help="Listen address as host:port, ':8080' for every interface (default: 127.0.0.1:8080)",
    )
    parser.add_argument(
        "--dir",
        default=None,
        help="Directory to serve (default: current directory)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML configuration file",
    )
    parser.add_argument(
        "--poll",
        action="store_true",
        help="Detect changes by polling instead of OS notifications",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    try:
        app_config = load_config(Path(args.config) if args.config else None)
        app_config = apply_overrides(app_config, address=args.addr, root=args.dir, poll=args.poll)
        server = LiveReloadServer(app_config)
    except ConfigError as exc:
        logging.error("%s", exc)
        raise SystemExit(2) from exc

    try:
        server.run()
    except MonitorError as exc:
        logging.error("%s", exc)
        raise SystemExit(1) from exc
    except OSError as exc:
        host, port = server.address
        logging.error("Cannot listen on %s:%s: %s", host, port, exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
