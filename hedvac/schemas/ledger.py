"""Ledger schemas - Request/Response DTOs for balances and records."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from hedvac.models import ReconciliationKind, TransactionReason

# =============================================================================
# Accounts & Balances
# =============================================================================


class AccountResponse(BaseModel):
    """Account response."""

    identity: str
    hedera_account_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BalancesResponse(BaseModel):
    """All non-zero balances of an account, in smallest units."""

    identity: str
    balances: dict[str, int]


class DepositInstructionsResponse(BaseModel):
    """Where to send a deposit and which memo to use."""

    vault_account_id: str
    memo: str
    network: str


# =============================================================================
# Ledger Transactions
# =============================================================================


class LedgerTransactionResponse(BaseModel):
    """Ledger record response."""

    id: int | None = None
    tx_id: str
    identity: str
    asset: str
    amount: int
    balance_after: int
    reason: TransactionReason
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


# =============================================================================
# Reconciliation
# =============================================================================


class ReconciliationRecordResponse(BaseModel):
    """Reconciliation record response."""

    id: int
    kind: ReconciliationKind
    identity: str
    asset: str
    amount: int
    details: dict[str, Any] = Field(default_factory=dict)
    resolved: bool
    created_at: datetime
    resolved_at: datetime | None = None

    model_config = {"from_attributes": True}


# =============================================================================
# Deposit cursor
# =============================================================================


class CursorResponse(BaseModel):
    """Deposit poller resume cursor."""

    cursor: str | None = Field(None, description="Consensus timestamp (seconds.nanos)")


class CursorUpdateRequest(BaseModel):
    """Move the resume cursor (may move it backwards to force a rescan)."""

    cursor: str | None = Field(None, pattern=r"^\d+\.\d{1,9}$")
