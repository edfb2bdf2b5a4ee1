"""
Command-line entry point: ``ntfy-tv -c ntfy-tv.yaml``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import structlog
import yaml
from pydantic import ValidationError

from .config import AppConfig, load_config
from .service import NtfyService


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Route structlog (and stdlib logging from aiohttp/aiosqlite) to stderr."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"unknown log level: {level}")

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
    # Library loggers only surface warnings unless debugging.
    logging.basicConfig(
        level=logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ntfy-tv",
        description="Keep a WebSocket open to an ntfy relay and surface messages as notifications",
    )
    parser.add_argument(
        "-c", "--config",
        default="ntfy-tv.yaml",
        help="Path to configuration file (default: ntfy-tv.yaml)",
    )
    parser.add_argument(
        "--log-level",
        help="Override logging.level from the config file",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration, print it as JSON, and exit",
    )
    return parser.parse_args(argv)


def _load(path: str) -> AppConfig:
    try:
        return load_config(path)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
    except (ValidationError, yaml.YAMLError) as exc:
        print(f"Configuration error in {path}:\n{exc}", file=sys.stderr)
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
    sys.exit(1)


def run(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    config = _load(args.config)

    if args.check_config:
        print(json.dumps(config.model_dump(), indent=2))
        return

    configure_logging(args.log_level or config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info(
        "service.config_loaded",
        config_path=args.config,
        relay=config.relay.url,
        subscriptions=config.subscriptions,
    )

    service = NtfyService(config)
    try:
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
