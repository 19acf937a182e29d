"""Hedvac Tip Bot - Ledger models.

This module defines the audit and idempotency records:
1. Ledger Transaction - one immutable record per balance mutation
2. Processed Transfer - idempotency marker per applied external transfer
3. Bot Setting - key/value store holding the deposit resume cursor
4. Reconciliation Record - debit/credit pairs that could not be completed
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from hedvac.utils.helpers import utcnow

RESUME_CURSOR_KEY = "last_processed_timestamp"


# =============================================================================
# 1. Ledger Transaction
# =============================================================================


class TransactionReason(str, Enum):
    """Reason code of a balance mutation."""

    # Credits
    DEPOSIT = "deposit"
    RECEIVE = "receive"
    RAIN_RECEIVE = "rain_receive"
    RAIN_REFUND = "rain_refund"
    LOOT_CLAIM = "loot_claim"
    LOOT_REFUND = "loot_refund"

    # Debits
    WITHDRAW = "withdraw"
    WITHDRAW_FEE = "withdraw_fee"
    SEND = "send"
    RAIN = "rain"
    LOOT = "loot"

    # Either direction
    ADJUSTMENT = "adjustment"


def generate_tx_id() -> str:
    """Globally unique transaction identifier."""
    return uuid.uuid4().hex


class LedgerTransaction(SQLModel, table=True):
    """Immutable record of one balance mutation.

    Applied in order, the records of an account sum to its current balance
    for every asset.

    Attributes:
        tx_id: Globally unique identifier
        identity: Owning account
        asset: HBAR or token id
        amount: Signed amount (positive = credit, negative = debit)
        balance_after: Balance of (identity, asset) right after this mutation
        reason: TransactionReason
        details: Correlation data (external transfer id, counterparty, event no)
    """

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        sa.Index("ix_ledger_transactions_identity_created_at", "identity", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tx_id: str = Field(default_factory=generate_tx_id, max_length=32, unique=True)
    identity: str = Field(max_length=32, index=True)
    asset: str = Field(max_length=32)
    amount: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))
    balance_after: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))
    reason: TransactionReason = Field(index=True)
    details: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=sa.Column(sa.JSON, nullable=False, default={}),
    )

    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# 2. Processed Transfer
# =============================================================================


class ProcessedTransfer(SQLModel, table=True):
    """Marker that an external transfer has been credited exactly once.

    Written in the same commit as the deposit credits; never deleted.
    """

    __tablename__ = "processed_transfers"

    transfer_id: str = Field(primary_key=True, max_length=64)
    consensus_timestamp: str | None = Field(default=None, max_length=32)
    identity: str | None = Field(default=None, max_length=32)
    processed_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# 3. Bot Setting
# =============================================================================


class BotSetting(SQLModel, table=True):
    """Process-wide key/value settings (resume cursor)."""

    __tablename__ = "bot_settings"

    key: str = Field(primary_key=True, max_length=64)
    value: str | None = Field(default=None, max_length=255)


# =============================================================================
# 4. Reconciliation Record
# =============================================================================


class ReconciliationKind(str, Enum):
    """Where a half-applied mutation happened."""

    TRANSFER_CREDIT_FAILED = "transfer_credit_failed"
    RAIN_CREDIT_FAILED = "rain_credit_failed"
    LOOT_CREDIT_FAILED = "loot_credit_failed"
    REFUND_CREDIT_FAILED = "refund_credit_failed"
    REFUND_PENDING = "refund_pending"
    DEPOSIT_APPLY_FAILED = "deposit_apply_failed"
    WITHDRAWAL_DEBIT_FAILED = "withdrawal_debit_failed"


class ReconciliationRecord(SQLModel, table=True):
    """A debit without its paired credit (or an external send without its debit).

    An operator reviews and resolves them. Two kinds are opened and resolved
    by the code itself: REFUND_PENDING around a loot refund credit, and
    DEPOSIT_APPLY_FAILED, which the deposit poller retries by transfer id.

    Attributes:
        kind: ReconciliationKind
        identity: Account that is owed (or owes) ``amount``
        amount: Amount in smallest units that was not applied
        details: Context (counterparty, event no, external tx id, error)
    """

    __tablename__ = "reconciliation_records"

    id: int | None = Field(default=None, primary_key=True)
    kind: ReconciliationKind = Field(index=True)
    identity: str = Field(max_length=32, index=True)
    asset: str = Field(max_length=32)
    amount: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))
    details: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=sa.Column(sa.JSON, nullable=False, default={}),
    )
    resolved: bool = Field(default=False, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = Field(default=None)
