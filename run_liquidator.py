"""
Stop-limit order liquidator.

Watches Chainlink oracles and the relay's stop-limit book, and fills
triggered orders against counter orders when the trade is profitable.

Usage:
  python run_liquidator.py            # settings from the environment / .env
  python run_liquidator.py --console  # human readable logs
"""

import asyncio
import sys

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from src.core.config import LiquidatorSettings
from src.live.runner import configure_logging, run

log = structlog.get_logger()


def main() -> int:
    load_dotenv()
    try:
        settings = LiquidatorSettings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    configure_logging(
        json_output=settings.json_logs and "--console" not in sys.argv,
        level=settings.log_level,
    )
    try:
        asyncio.run(run(settings))
    except Exception:
        log.exception("liquidator.fatal_error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
