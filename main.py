"""
Plates — Entry Point.

Single entry point: `python main.py` opens the database and starts the
Telegram bot.
"""

import logging

from plates.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from plates.bot.telegram_bot import main

if __name__ == "__main__":
    main()
