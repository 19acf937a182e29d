"""Hedvac Tip Bot - Celery tasks module.

Tasks organized by functionality:
- deposits: Deposit polling
- loot_expiry: Loot expiry sweep
"""

from hedvac.workers.tasks.deposits import poll_deposits
from hedvac.workers.tasks.loot_expiry import sweep_expired_loot

__all__ = [
    "poll_deposits",
    "sweep_expired_loot",
]
