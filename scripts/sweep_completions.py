#!/usr/bin/env python3
"""Run the completion sweep once, e.g. from cron."""

import asyncio
import logging

from campbook.core.database import async_session_factory, close_db
from campbook.services.completion_service import CompletionService
from campbook.services.notifications import get_notifier

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main() -> int:
    notifier = get_notifier()
    try:
        async with async_session_factory() as db:
            completed = await CompletionService(db, notifier).sweep()
    finally:
        await notifier.close()
        await close_db()

    logger.info("Completed %d bookings", completed)
    return completed


if __name__ == "__main__":
    asyncio.run(main())
