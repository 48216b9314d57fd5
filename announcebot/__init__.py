"""announcebot - announce upcoming calendar events by mail, exactly once.

Reads a public iCalendar feed, renders an announcement for every upcoming
event whose title carries the marker prefix, and mails it to a fixed set of
recipients. A JSON ledger of content fingerprints makes repeated runs by an
external scheduler idempotent.
"""

__version__ = "1.0.0"

from typing import Any, Optional

# Loggers of chatty third-party libraries clamped to WARNING.
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "charset_normalizer")


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to the console (stderr).

    The ANNOUNCEBOT_DEBUG environment variable (truthy values: "1", "true",
    "yes", "on") forces DEBUG verbosity regardless of the requested level.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("ANNOUNCEBOT_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output.
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str) and level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def run(args: Optional[Any] = None) -> int:
    """Run the pipeline once and print the summary.

    Args:
        args: Optional namespace with ``dry_run`` and ``config`` attributes.

    Returns:
        Process exit status (0 on a completed run, also when single
        deliveries failed; failures are printed).

    Raises:
        AnnounceBotError: on configuration, state, feed or render failures.
    """
    import asyncio
    import logging
    import os

    _init_logging(os.environ.get("ANNOUNCEBOT_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    from .config_loader import load_config
    from .dispatcher import Dispatcher
    from .pipeline import AnnouncementPipeline, format_summary
    from .state_store import SentLedger

    dry_run = bool(getattr(args, "dry_run", False))
    settings = load_config(getattr(args, "config", None))

    # The environment wins over the config file.
    if not os.environ.get("ANNOUNCEBOT_LOG_LEVEL") and settings.log_level:
        logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))

    logger.debug("Starting announcebot %s (%s mode)", __version__, "capture" if dry_run else "live")

    pipeline = AnnouncementPipeline(
        settings,
        SentLedger(settings.state_path),
        Dispatcher.from_settings(settings, dry_run=dry_run),
    )
    summary = asyncio.run(pipeline.run())
    print(format_summary(summary, settings.summary_label))
    return 0
