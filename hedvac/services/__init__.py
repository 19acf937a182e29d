"""Hedvac Service Layer.

Business logic services for the Hedvac custodial tip bot.
Each service works against a LedgerStore and can be reused by the chat layer,
the operator API and background workers.
"""

from hedvac.services.activity_service import ActivityProvider, ActivityTracker
from hedvac.services.ledger_service import DepositInstructions, LedgerService
from hedvac.services.loot_service import LootClaimResult, LootService, SweepStats
from hedvac.services.notification_service import (
    DiscordNotifier,
    LogNotifier,
    Notifier,
    get_notifier,
)
from hedvac.services.rain_service import RainResult, RainService
from hedvac.services.withdrawal_service import WITHDRAW_ALL, WithdrawalResult, WithdrawalService

__all__ = [
    "ActivityProvider",
    "ActivityTracker",
    "DepositInstructions",
    "LedgerService",
    "LootClaimResult",
    "LootService",
    "SweepStats",
    "Notifier",
    "DiscordNotifier",
    "LogNotifier",
    "get_notifier",
    "RainResult",
    "RainService",
    "WITHDRAW_ALL",
    "WithdrawalResult",
    "WithdrawalService",
]
