"""Periodic maintenance for the durable store.

Logically expired records are already excluded by every lookup; this pass
normalises them by flipping ``is_active`` off so listings and analytics show
them as deleted. Run it from cron or a scheduler::

    python -m urlshortener.maintenance clean-expired
"""

import argparse
import asyncio
import logging

from urlshortener.database import async_session, close_db
from urlshortener.service import utcnow
from urlshortener.store import URLStore

logger = logging.getLogger("urlshortener")


async def clean_expired_urls() -> int:
    async with async_session() as session:
        count = await URLStore(session).deactivate_expired(utcnow())
    logger.info(f"Deactivated {count} expired URLs")
    return count


async def _main(command: str) -> None:
    try:
        if command == "clean-expired":
            count = await clean_expired_urls()
            print(f"Deactivated {count} expired URLs")
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="URL shortener maintenance tasks")
    parser.add_argument("command", choices=["clean-expired"])
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(_main(args.command))


if __name__ == "__main__":
    main()
