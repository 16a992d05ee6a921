"""Main entry point. Behaviour comes from the environment (.env), not flags."""
import asyncio
import logging
import sys

import orjson

from itax_sync.config import Config, ExtractionSettings
from itax_sync.logging_conf import setup_logging
from itax_sync.jobs.runner import ExtractionRunner

logger = logging.getLogger(__name__)


def main() -> None:
    """Run every company in the roster and print the aggregate as JSON."""
    setup_logging()

    try:
        Config.validate()
        settings = ExtractionSettings.from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    runner = ExtractionRunner(settings)
    try:
        summary = asyncio.run(runner.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    sys.stdout.write(orjson.dumps(summary, option=orjson.OPT_INDENT_2).decode() + "\n")


if __name__ == "__main__":
    main()
