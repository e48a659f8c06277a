from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from .acquisition import run
from .config import CONNECT_TIMEOUT, SCAN_DWELL, SUBSCRIBE_TIMEOUT, ReceiverConfig

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oxysmart-receiver",
        description="Stream SpO2 and heart-rate readings from an OxySmart BLE pulse oximeter to stdout as CSV.",
    )
    parser.add_argument(
        "--adapter",
        action="append",
        default=[],
        help="Bluetooth adapter to use, e.g. hci0 (repeatable; default: every adapter found)",
    )
    parser.add_argument(
        "--scan-dwell",
        type=float,
        default=SCAN_DWELL,
        help=f"Seconds to collect advertisements per adapter (default: {SCAN_DWELL})",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=CONNECT_TIMEOUT,
        help=f"Connect timeout in seconds (default: {CONNECT_TIMEOUT})",
    )
    parser.add_argument(
        "--subscribe-timeout",
        type=float,
        default=SUBSCRIBE_TIMEOUT,
        help=f"Timeout for enabling notifications in seconds (default: {SUBSCRIBE_TIMEOUT})",
    )
    parser.add_argument(
        "--retry-delay",
        type=float,
        default=0.0,
        help="Pause before rediscovering after a failure or disconnect (default: 0)",
    )
    parser.add_argument(
        "--no-header",
        action="store_true",
        help="Do not print the CSV header line",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: stderr only)",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ReceiverConfig:
    return ReceiverConfig(
        adapters=tuple(args.adapter),
        scan_dwell=args.scan_dwell,
        connect_timeout=args.connect_timeout,
        subscribe_timeout=args.subscribe_timeout,
        retry_delay=args.retry_delay,
        show_header=not args.no_header,
    )


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    # Readings own stdout; logs go to stderr and optionally a file
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Cannot open log file {log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    config = config_from_args(args)
    logger.info(
        "🔍 Looking for OxySmart pulse oximeter on %s",
        ", ".join(config.adapters) or "all adapters",
    )
    raise SystemExit(run(config))
