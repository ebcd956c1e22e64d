#!/usr/bin/env python3
"""taildir — Entry Point."""

import argparse
import logging
import signal
import sys
import threading

from taildir.config import load_config, load_yaml_config
from taildir.errors import TaildirError
from taildir.source import TaildirSource

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taildir",
        description="Tail groups of log files with checkpointed, at-least-once delivery.",
    )
    parser.add_argument(
        "--config", required=True,
        help="Path to YAML config file with file groups and options",
    )
    parser.add_argument(
        "--position-file", default=None,
        help="Override the position (checkpoint) file path",
    )
    parser.add_argument(
        "--output-dir", default=None,
        help="Directory for delivered JSON batches",
    )
    parser.add_argument(
        "--skip-to-end", action="store_true",
        help="Start newly discovered files at their end instead of their beginning",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run a single reconcile/read pass and exit",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [TAILDIR] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(args, load_yaml_config(args.config))
        source = TaildirSource(config)
        source.start()
    except TaildirError as e:
        logger.error("Startup failed: %s", e)
        return 1

    if args.once:
        try:
            n = source.process()
            logger.info("Delivered %d event(s)", n)
        finally:
            source.stop()
        return 0

    shutdown = threading.Event()

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping...")
        shutdown.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("Taildir source running. Press Ctrl+C to stop.")
    source.run(shutdown)
    return 0


if __name__ == "__main__":
    sys.exit(main())
