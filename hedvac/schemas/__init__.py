"""Hedvac Schemas - Pydantic DTOs for the operator API."""

from hedvac.schemas.ledger import (
    AccountResponse,
    BalancesResponse,
    CursorResponse,
    CursorUpdateRequest,
    DepositInstructionsResponse,
    LedgerTransactionResponse,
    ReconciliationRecordResponse,
)
from hedvac.schemas.promotion import (
    LootClaimResponse,
    LootDetailResponse,
    LootEventResponse,
    RainEventResponse,
)

__all__ = [
    "AccountResponse",
    "BalancesResponse",
    "CursorResponse",
    "CursorUpdateRequest",
    "DepositInstructionsResponse",
    "LedgerTransactionResponse",
    "ReconciliationRecordResponse",
    "LootClaimResponse",
    "LootDetailResponse",
    "LootEventResponse",
    "RainEventResponse",
]
