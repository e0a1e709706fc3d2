"""
Store purge service for removing expired entries.

Reads already treat expired entries as absent, so this only reclaims
space. Provides both a one-shot purge and an async background task that
is scheduled during application lifespan.
"""

import asyncio
import logging

from sqlmodel import Session

from broker.crud.store import purge_expired_entries

logger = logging.getLogger(__name__)

# Default purge interval in seconds (5 minutes)
DEFAULT_PURGE_INTERVAL_SECONDS = 300


async def purge_expired_store_entries(*, session: Session) -> int:
    """
    Remove expired store entries.

    Args:
        session: Database session

    Returns:
        Number of entries removed
    """
    return purge_expired_entries(session=session)


async def run_purge_task(
    *,
    get_session,
    interval_seconds: int = DEFAULT_PURGE_INTERVAL_SECONDS,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Background task that periodically purges expired store entries.

    Runs until cancelled or stop_event is set. A failed run is logged and
    the task keeps going.

    Args:
        get_session: Callable that returns a database session context manager
        interval_seconds: Time between purge runs
        stop_event: Optional event to signal task shutdown
    """
    logger.info("Store purge task started (interval: %d seconds)", interval_seconds)

    while True:
        try:
            if stop_event is not None:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                    logger.info("Store purge task stopping (stop event set)")
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(interval_seconds)

            with get_session() as session:
                count = purge_expired_entries(session=session)
                if count > 0:
                    logger.info("Purged %d expired store entries", count)
                else:
                    logger.debug("No expired store entries to purge")

        except asyncio.CancelledError:
            logger.info("Store purge task cancelled")
            raise
        except Exception:
            logger.exception("Error in store purge task")
            await asyncio.sleep(interval_seconds)

    logger.info("Store purge task stopped")
