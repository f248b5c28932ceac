#!/usr/bin/env python3
"""Main entry point for the OddsFlow Radar launcher bot."""

import logging
import sys

from dotenv import load_dotenv

from oddsflow.config import Config
from oddsflow.launcher import LauncherBot

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Initialize and run the launcher bot."""
    # Pick up a local .env before reading configuration.
    load_dotenv()

    try:
        cfg = Config()
        cfg.validate_bot()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    if cfg.DEBUG:
        logging.getLogger().setLevel(logging.DEBUG)
    logger.info("Mini App URL: %s", cfg.MINIAPP_URL)

    bot = LauncherBot(token=cfg.BOT_TOKEN, cfg=cfg)

    try:
        bot.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as exc:  # pragma: no cover - safety net
        logger.exception("Fatal error: %s", exc)
        sys.exit(1)


if __name__ == '__main__':
    main()
