"""Ledger API - Operator endpoints for accounts, history and reconciliation.

Endpoints for:
- Account lookup, balances and history
- Deposit instructions (vault + memo)
- Reconciliation records (list, resolve)
- Deposit poller resume cursor (read, override)
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from hedvac.api.deps import LedgerServiceDep, StoreDep, verify_operator
from hedvac.schemas.ledger import (
    AccountResponse,
    BalancesResponse,
    CursorResponse,
    CursorUpdateRequest,
    DepositInstructionsResponse,
    LedgerTransactionResponse,
    ReconciliationRecordResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ledger", tags=["Ledger"], dependencies=[Depends(verify_operator)])


# ============ Accounts ============


@router.get("/accounts/{identity}", response_model=AccountResponse)
async def get_account(identity: str, service: LedgerServiceDep):
    """Get a registered account."""
    return await service.require_account(identity)


@router.get("/accounts/{identity}/balances", response_model=BalancesResponse)
async def get_balances(identity: str, service: LedgerServiceDep):
    """Get all non-zero balances of an account."""
    return BalancesResponse(identity=identity, balances=await service.get_balances(identity))


@router.get("/accounts/{identity}/history", response_model=list[LedgerTransactionResponse])
async def get_history(
    identity: str,
    service: LedgerServiceDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
):
    """Get ledger records, most recent first."""
    return await service.get_history(identity, limit)


@router.get(
    "/accounts/{identity}/deposit-instructions", response_model=DepositInstructionsResponse
)
async def get_deposit_instructions(identity: str, service: LedgerServiceDep):
    """Vault address and memo for deposits to this account."""
    instructions = await service.deposit_instructions(identity)
    return DepositInstructionsResponse(
        vault_account_id=instructions.vault_account_id,
        memo=instructions.memo,
        network=instructions.network,
    )


# ============ Reconciliation ============


@router.get("/reconciliation", response_model=list[ReconciliationRecordResponse])
async def list_reconciliation(
    service: LedgerServiceDep,
    resolved: bool | None = False,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
):
    """List reconciliation records (unresolved by default)."""
    return await service.list_reconciliation(resolved, limit)


@router.post("/reconciliation/{record_id}/resolve", response_model=ReconciliationRecordResponse)
async def resolve_reconciliation(record_id: int, service: LedgerServiceDep):
    """Mark a reconciliation record as handled."""
    record = await service.resolve_reconciliation(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Reconciliation record not found")
    return record


# ============ Deposit cursor ============


@router.get("/deposits/cursor", response_model=CursorResponse)
async def get_cursor(store: StoreDep):
    """Get the deposit poller resume cursor."""
    return CursorResponse(cursor=await store.get_cursor())


@router.put("/deposits/cursor", response_model=CursorResponse)
async def set_cursor(data: CursorUpdateRequest, store: StoreDep):
    """Override the resume cursor; already-processed transfers stay deduplicated."""
    await store.set_cursor(data.cursor)
    logger.warning(f"Deposit cursor set to {data.cursor} by operator")
    return CursorResponse(cursor=data.cursor)
