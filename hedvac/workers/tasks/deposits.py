"""Hedvac Tip Bot - Deposit polling task.

Each run is one poller cycle. A Redis lock keeps cycles from overlapping
across worker processes, mirroring the in-process guard of DepositPoller.
"""

import logging
from dataclasses import asdict

from hedvac.celery_app import celery_app

logger = logging.getLogger(__name__)

LOCK_NAME = "lock:deposit-poll"
LOCK_TIMEOUT_SECONDS = 300


@celery_app.task(name="hedvac.workers.tasks.deposits.poll_deposits")
def poll_deposits():
    """Run one deposit polling cycle."""
    import asyncio

    import redis.asyncio as redis

    from hedvac.core.config import get_settings
    from hedvac.hedera.mirror import MirrorNodeClient
    from hedvac.services.notification_service import get_notifier
    from hedvac.storage.factory import create_ledger_store
    from hedvac.workers.deposit_poller import DepositPoller

    settings = get_settings()

    async def _poll():
        client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        lock = client.lock(f"{settings.redis_key_prefix}:{LOCK_NAME}", timeout=LOCK_TIMEOUT_SECONDS)
        if not await lock.acquire(blocking=False):
            logger.info("Deposit poll already running elsewhere, skipping")
            await client.aclose()
            return None

        store = create_ledger_store()
        mirror = MirrorNodeClient()
        notifier = get_notifier()
        try:
            poller = DepositPoller(store, mirror, notifier=notifier)
            stats = await poller.safe_poll()
            return asdict(stats) if stats else None
        finally:
            await notifier.close()
            await mirror.close()
            await store.close()
            await lock.release()
            await client.aclose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_poll())
    finally:
        loop.close()
