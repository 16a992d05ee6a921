"""Logging setup."""
import logging
import sys

from itax_sync.config import config

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger.

    Output goes to stderr so stdout stays free for the final JSON summary.
    """
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    # Chatty third-party loggers
    for name in ("httpx", "httpcore", "hpack", "asyncio", "PIL"):
        logging.getLogger(name).setLevel(logging.WARNING)
