"""Command-line entry for announcebot.

No subcommands: one run per invocation, scheduled externally (cron, systemd
timer). ``--dry-run`` writes the composed message to a local file instead of
sending it.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn, Optional

from . import run
from .exceptions import AnnounceBotError

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the announcebot CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="announcebot",
        description="Announce upcoming calendar events by mail, exactly once per event",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  announcebot                          # Send pending announcements
  announcebot --dry-run                # Write the message to output.eml instead
  announcebot --config /etc/announcebot.yaml
        """,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="capture the outgoing message to a local file instead of sending it",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="configuration file (default: ./config.yaml, or ANNOUNCEBOT_CONFIG env var)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the CLI and exit with the run's status.

    Any pipeline failure prints the error to stderr and exits 1.
    """
    args = _create_parser().parse_args(argv)

    try:
        status = run(args)
    except KeyboardInterrupt:
        print("announcebot: interrupted", file=sys.stderr)
        sys.exit(130)  # 128 + SIGINT
    except AnnounceBotError as exc:
        print(f"announcebot: error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        logger.exception("announcebot terminated unexpectedly")
        print(f"announcebot: unexpected error: {type(exc).__name__}: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(status)


if __name__ == "__main__":
    main()
