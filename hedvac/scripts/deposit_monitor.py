"""Deposit Monitor Script - Poll vault deposits and sweep expired loot.

Runs the deposit poller and the loot expiry sweep in one process, for
deployments without Celery.

Usage:
    python -m hedvac.scripts.deposit_monitor
"""

import asyncio
import logging

from hedvac.core.config import get_settings
from hedvac.hedera import get_mirror_client
from hedvac.services.loot_service import LootService
from hedvac.services.notification_service import get_notifier
from hedvac.storage.factory import close_ledger_store, get_ledger_store
from hedvac.workers.deposit_poller import DepositPoller

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep_loop(loot_service: LootService, interval: int) -> None:
    """Sweep expired loot forever."""
    while True:
        try:
            stats = await loot_service.sweep_expired()
            if stats.expired:
                logger.info(f"Swept {stats.expired} expired loot events")
        except Exception as e:
            logger.error(f"Error in loot sweep loop: {e}", exc_info=True)
        await asyncio.sleep(interval)


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    store = get_ledger_store()
    await store.initialize()

    mirror = get_mirror_client()
    notifier = get_notifier()
    poller = DepositPoller(store, mirror, notifier=notifier)

    print("\n" + "=" * 60)
    print("Hedvac Deposit Monitor")
    print("=" * 60)
    print(f"Network: {settings.hedera_network}")
    print(f"Vault: {poller.vault_account_id}")
    print(f"Ledger backend: {store.backend}")
    print(f"Poll Interval: {settings.deposit_poll_interval_seconds}s")
    print(f"Loot Sweep Interval: {settings.loot_sweep_interval_seconds}s")
    print("=" * 60 + "\n")

    poller.start()
    sweeper = asyncio.create_task(
        sweep_loop(LootService(store), settings.loot_sweep_interval_seconds)
    )
    try:
        await asyncio.Event().wait()
    finally:
        sweeper.cancel()
        await poller.stop()
        await notifier.close()
        await mirror.close()
        await close_ledger_store()
        logger.info("Monitor stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
