"""Hedvac Tip Bot - Promotional event models (rain and loot)."""

import secrets
import time
from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from hedvac.utils.helpers import utcnow


class PromotionStatus(str, Enum):
    """Promotional event status.

    State transitions:
    - active -> completed (rain distributed, loot capacity reached)
    - active -> expired -> completed (loot sweep, remainder refunded in between)
    """

    ACTIVE = "active"
    EXPIRED = "expired"
    COMPLETED = "completed"


class LootType(str, Enum):
    """Loot presentation type."""

    NORMAL = "normal"
    MYSTERY = "mystery"


def generate_event_no(prefix: str) -> str:
    """Generate a unique event number.

    Format: PREFIX + timestamp_ms + random_hex(6)
    - Rain: RAIN1702345678000ABC123
    - Loot: LOOT1702345678000ABC123
    """
    timestamp = int(time.time() * 1000)
    random_suffix = secrets.token_hex(3).upper()
    return f"{prefix}{timestamp}{random_suffix}"


class RainEvent(SQLModel, table=True):
    """A completed rain distribution.

    Attributes:
        amount: Total committed by the creator
        distributed_amount: Sum credited to recipients
        recipient_count: Number of recipients credited
        refunded_amount: Integer-division remainder returned to the creator
        duration_minutes: Activity window used to pick recipients
        min_role: Advisory eligibility constraint (not enforced here)
    """

    __tablename__ = "rain_events"

    id: int | None = Field(default=None, primary_key=True)
    event_no: str = Field(max_length=32, unique=True, index=True)
    creator_id: str = Field(max_length=32, index=True)
    asset: str = Field(max_length=32)
    amount: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))
    distributed_amount: int = Field(
        default=0, sa_column=sa.Column(sa.BigInteger, nullable=False, default=0)
    )
    recipient_count: int = Field(default=0)
    refunded_amount: int = Field(
        default=0, sa_column=sa.Column(sa.BigInteger, nullable=False, default=0)
    )
    duration_minutes: int = Field(default=60)
    min_role: str | None = Field(default=None, max_length=100)
    message: str | None = Field(default=None, max_length=500)
    status: PromotionStatus = Field(default=PromotionStatus.COMPLETED, index=True)

    created_at: datetime = Field(default_factory=utcnow, index=True)


class LootEvent(SQLModel, table=True):
    """A loot drop claimed on demand by up to ``max_claims`` distinct users.

    Attributes:
        total_amount: Committed by the creator up front
        claimed_amount: Sum paid out to claimers
        claim_count: Number of claims so far
        refunded_amount: Remainder returned to the creator on completion
        expires_at: After this the sweep refunds the remainder
    """

    __tablename__ = "loot_events"
    __table_args__ = (sa.Index("ix_loot_events_status_expires_at", "status", "expires_at"),)

    id: int | None = Field(default=None, primary_key=True)
    event_no: str = Field(max_length=32, unique=True, index=True)
    creator_id: str = Field(max_length=32, index=True)
    asset: str = Field(max_length=32)
    total_amount: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))
    claimed_amount: int = Field(
        default=0, sa_column=sa.Column(sa.BigInteger, nullable=False, default=0)
    )
    claim_count: int = Field(default=0)
    max_claims: int
    loot_type: LootType = Field(default=LootType.NORMAL)
    message: str | None = Field(default=None, max_length=500)
    min_role: str | None = Field(default=None, max_length=100)
    channel_id: str | None = Field(default=None, max_length=32)
    refunded_amount: int = Field(
        default=0, sa_column=sa.Column(sa.BigInteger, nullable=False, default=0)
    )
    status: PromotionStatus = Field(default=PromotionStatus.ACTIVE)

    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = Field(default=None)

    @property
    def amount_per_claim(self) -> int:
        return self.total_amount // self.max_claims

    @property
    def remaining_amount(self) -> int:
        return self.total_amount - self.claimed_amount

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class LootClaim(SQLModel, table=True):
    """One claim per user per loot event."""

    __tablename__ = "loot_claims"
    __table_args__ = (
        sa.UniqueConstraint("event_no", "user_id", name="uq_loot_claims_event_user"),
    )

    id: int | None = Field(default=None, primary_key=True)
    event_no: str = Field(foreign_key="loot_events.event_no", max_length=32, index=True)
    user_id: str = Field(max_length=32)
    amount: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))
    claimed_at: datetime = Field(default_factory=utcnow)
