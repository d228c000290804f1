"""
Expiry reaper: deletes pending auth requests whose expiry has passed.

Runs on a fixed schedule (daily by default), either in-process from the
app lifespan or through `python -m artfinance.worker`.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from artfinance.clock import Clock, utcnow
from artfinance.config import settings
from artfinance.errors import StorageError
from artfinance.models.pending_auth_request import PendingAuthRequest, AuthRequestStatus

logger = logging.getLogger(__name__)

# Lazily expired records are swept too so they do not linger
REAPABLE_STATUSES = (AuthRequestStatus.PENDING, AuthRequestStatus.EXPIRED)


def _reapable(now):
    return and_(
        PendingAuthRequest.status.in_(REAPABLE_STATUSES),
        PendingAuthRequest.expires_at < now,
    )


async def cleanup_expired_requests(
    db: AsyncSession,
    *,
    batch_size: Optional[int] = None,
    clock: Clock = utcnow,
) -> int:
    """
    Delete expired requests in bounded, all-or-nothing batches.

    The DELETE repeats the expiry predicate, so a request consumed by a
    verify between the SELECT and the DELETE is left alone.

    Args:
        db: Database session
        batch_size: Max deletes per transaction, defaults to settings.cleanup_batch_size
        clock: Time source

    Returns:
        Number of requests deleted (0 with no writes when nothing expired)

    Raises:
        StorageError: A batch failed; that batch was rolled back
    """
    batch_size = batch_size or settings.cleanup_batch_size
    now = clock()
    deleted = 0

    logger.info(f"Starting cleanup of auth requests expired before {now.isoformat()}")

    while True:
        try:
            result = await db.execute(
                select(PendingAuthRequest.token)
                .where(_reapable(now))
                .order_by(PendingAuthRequest.expires_at.asc())
                .limit(batch_size)
            )
            tokens = list(result.scalars().all())
            if not tokens:
                break

            outcome = await db.execute(
                delete(PendingAuthRequest).where(
                    and_(PendingAuthRequest.token.in_(tokens), _reapable(now))
                )
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Cleanup batch failed after {deleted} deletions: {str(e)}", exc_info=True)
            raise StorageError() from e

        deleted += outcome.rowcount or 0
        if len(tokens) < batch_size:
            break

    if deleted:
        logger.info(f"Deleted {deleted} expired auth requests")
    else:
        logger.info("No expired auth requests to clean up")

    return deleted


async def run_cleanup_loop(
    session_factory: async_sessionmaker,
    interval_seconds: float,
) -> None:
    """Run cleanup every interval_seconds until cancelled."""
    while True:
        try:
            async with session_factory() as db:
                await cleanup_expired_requests(db)
        except StorageError:
            logger.warning("Scheduled cleanup failed, retrying next interval")
        await asyncio.sleep(interval_seconds)
