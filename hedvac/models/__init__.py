"""Models module - SQLModel database entities."""

from hedvac.models.account import Account, AccountBalance
from hedvac.models.ledger import (
    RESUME_CURSOR_KEY,
    BotSetting,
    LedgerTransaction,
    ProcessedTransfer,
    ReconciliationKind,
    ReconciliationRecord,
    TransactionReason,
    generate_tx_id,
)
from hedvac.models.promotion import (
    LootClaim,
    LootEvent,
    LootType,
    PromotionStatus,
    RainEvent,
    generate_event_no,
)

__all__ = [
    # Account
    "Account",
    "AccountBalance",
    # Ledger
    "LedgerTransaction",
    "TransactionReason",
    "ProcessedTransfer",
    "BotSetting",
    "RESUME_CURSOR_KEY",
    "ReconciliationRecord",
    "ReconciliationKind",
    "generate_tx_id",
    # Promotions
    "RainEvent",
    "LootEvent",
    "LootClaim",
    "LootType",
    "PromotionStatus",
    "generate_event_no",
]
