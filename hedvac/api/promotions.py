"""Promotions API - Operator endpoints for rain and loot events."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query

from hedvac.api.deps import LootServiceDep, StoreDep, verify_operator
from hedvac.schemas.promotion import (
    LootClaimResponse,
    LootDetailResponse,
    LootEventResponse,
    RainEventResponse,
)

router = APIRouter(
    prefix="/promotions", tags=["Promotions"], dependencies=[Depends(verify_operator)]
)


@router.get("/rain", response_model=list[RainEventResponse])
async def list_rain_events(
    store: StoreDep,
    creator_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
):
    """Rain history, newest first."""
    return await store.list_rain_events(creator_id, limit)


@router.get("/loot/active", response_model=list[LootEventResponse])
async def list_active_loot(
    service: LootServiceDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
):
    """Loot events that can still be claimed."""
    events = await service.list_active_loot(limit)
    return [LootEventResponse.model_validate(e) for e in events]


@router.get("/loot/{event_no}", response_model=LootDetailResponse)
async def get_loot(event_no: str, service: LootServiceDep):
    """Loot event with its claims."""
    event = await service.get_loot(event_no)
    if event is None:
        raise HTTPException(status_code=404, detail="Loot not found")
    claims = await service.list_claims(event_no)
    return LootDetailResponse(
        event=LootEventResponse.model_validate(event),
        claims=[LootClaimResponse.model_validate(c) for c in claims],
    )


@router.post("/loot/sweep")
async def sweep_expired_loot(service: LootServiceDep) -> dict[str, Any]:
    """Run the expiry sweep now."""
    stats = await service.sweep_expired()
    return {
        "expired": stats.expired,
        "refunded_amount": stats.refunded_amount,
        "errors": stats.errors,
    }
