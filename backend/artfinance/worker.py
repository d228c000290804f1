"""
Scheduled-job entrypoint for the expiry reaper.
Run daily from cron / Cloud Scheduler: python -m artfinance.worker
"""
import asyncio
import logging

from artfinance import database
from artfinance.services.reaper import cleanup_expired_requests

logger = logging.getLogger(__name__)


async def worker_main() -> int:
    try:
        async with database.AsyncSessionLocal() as db:
            deleted = await cleanup_expired_requests(db)
        logger.info(f"Cleanup completed: {deleted} expired requests deleted")
        return deleted
    finally:
        await database.engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(worker_main())
