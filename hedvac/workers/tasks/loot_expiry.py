"""Hedvac Tip Bot - Loot expiry task.

Refunds the unclaimed remainder of expired loot events. The sweep is
idempotent, so overlapping runs are harmless.
"""

import logging

from hedvac.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="hedvac.workers.tasks.loot_expiry.sweep_expired_loot")
def sweep_expired_loot():
    """Expire and refund loot events past their expiry."""
    import asyncio

    from hedvac.services.loot_service import LootService
    from hedvac.storage.factory import create_ledger_store

    async def _sweep():
        store = create_ledger_store()
        try:
            stats = await LootService(store).sweep_expired()
        finally:
            await store.close()
        if stats.expired or stats.errors:
            logger.info(f"Loot sweep: {stats}")
        return {
            "expired": stats.expired,
            "refunded_amount": stats.refunded_amount,
            "errors": stats.errors,
        }

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_sweep())
    finally:
        loop.close()
