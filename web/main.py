"""Entry point: configure logging and serve the cron endpoint."""

import asyncio
from config.logging_config import setup_logging
from web.app import start_web


def main() -> None:
    setup_logging()
    asyncio.run(start_web())


if __name__ == "__main__":
    main()
