"""Promotion schemas - Response DTOs for rain and loot events."""

from datetime import datetime

from pydantic import BaseModel

from hedvac.models import LootType, PromotionStatus


class RainEventResponse(BaseModel):
    """Rain event response."""

    event_no: str
    creator_id: str
    asset: str
    amount: int
    distributed_amount: int
    recipient_count: int
    refunded_amount: int
    duration_minutes: int
    min_role: str | None = None
    message: str | None = None
    status: PromotionStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class LootEventResponse(BaseModel):
    """Loot event response."""

    event_no: str
    creator_id: str
    asset: str
    total_amount: int
    claimed_amount: int
    claim_count: int
    max_claims: int
    amount_per_claim: int
    loot_type: LootType
    message: str | None = None
    min_role: str | None = None
    channel_id: str | None = None
    refunded_amount: int
    status: PromotionStatus
    created_at: datetime
    expires_at: datetime | None = None

    model_config = {"from_attributes": True}


class LootClaimResponse(BaseModel):
    """Loot claim response."""

    event_no: str
    user_id: str
    amount: int
    claimed_at: datetime

    model_config = {"from_attributes": True}


class LootDetailResponse(BaseModel):
    """Loot event with its claims."""

    event: LootEventResponse
    claims: list[LootClaimResponse]
