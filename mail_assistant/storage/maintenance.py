"""APScheduler setup for the periodic context compression sweep."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from mail_assistant.storage.context_store import ContextStore

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL_MINUTES = 60


async def compress_oversized(store: ContextStore) -> int:
    """Compress every user whose log is over the threshold. Returns how many were compressed."""
    compressed = 0
    for user_id in store.users():
        if store.should_compress(user_id) and await store.compress(user_id):
            compressed += 1
    if compressed:
        logger.info("Maintenance compressed context for %d user(s)", compressed)
    return compressed


def create_maintenance_scheduler(
    store: ContextStore,
    interval_minutes: int = _DEFAULT_INTERVAL_MINUTES,
) -> AsyncIOScheduler:
    """Return a configured AsyncIOScheduler that sweeps the context store periodically.

    The caller is responsible for calling scheduler.start() and scheduler.shutdown().
    """
    if interval_minutes <= 0:
        logger.warning(
            "Invalid maintenance interval %r; defaulting to %d minutes",
            interval_minutes,
            _DEFAULT_INTERVAL_MINUTES,
        )
        interval_minutes = _DEFAULT_INTERVAL_MINUTES

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        compress_oversized,
        "interval",
        minutes=interval_minutes,
        args=[store],
        id="context-compression",
        max_instances=1,
        coalesce=True,
    )
    logger.info("Context maintenance scheduled every %d minute(s)", interval_minutes)
    return scheduler
