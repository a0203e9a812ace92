# bot.py — только боты, без HTTP API
import asyncio

from fleetbot.bots import start_bots
from fleetbot.db import init_db
from fleetbot.logger import get_logger

logger = get_logger("bot")


async def main():
    init_db()
    await start_bots()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bots stopped")
