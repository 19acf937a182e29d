"""Loot Service - A pool claimed on demand by up to ``max_claims`` users.

Loot lifecycle:
1. create_loot: debit the creator, store an ACTIVE event with an expiry
2. claim: the store admits one claim per user atomically; the claimer is
   credited ``total // max_claims``. The claim that fills the event
   completes it and refunds the rounding remainder to the creator.
3. sweep_expired: ACTIVE events past expiry move to EXPIRED (one sweeper
   wins), the unclaimed remainder is refunded, then the event is COMPLETED.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from hedvac.core.config import get_settings
from hedvac.core.exceptions import ValidationError
from hedvac.models import (
    LootClaim,
    LootEvent,
    LootType,
    PromotionStatus,
    ReconciliationKind,
    ReconciliationRecord,
    TransactionReason,
    generate_event_no,
)
from hedvac.services.ledger_service import (
    LedgerService,
    validate_amount,
    validate_asset,
    validate_identity,
)
from hedvac.storage.base import LedgerStore
from hedvac.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class LootClaimResult:
    claim: LootClaim
    event: LootEvent
    balance_after: int


@dataclass
class SweepStats:
    """Result of one expiry sweep."""

    expired: int = 0
    refunded_amount: int = 0
    errors: list[str] = field(default_factory=list)


class LootService:
    """Service for loot events."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.ledger = LedgerService(store)
        self.settings = get_settings()

    # =========================================================================
    # Create
    # =========================================================================

    async def create_loot(
        self,
        creator_id: str,
        asset: str,
        total_amount: int,
        max_claims: int,
        duration_hours: int | None = None,
        loot_type: LootType = LootType.NORMAL,
        message: str | None = None,
        min_role: str | None = None,
        channel_id: str | None = None,
    ) -> LootEvent:
        """Debit the creator and open a loot event.

        Raises:
            ValidationError: Bad amount, claim cap or duration
            InsufficientFundsError: Creator cannot cover the pool
        """
        validate_identity(creator_id)
        validate_asset(asset)
        validate_amount(total_amount)
        if isinstance(max_claims, bool) or not isinstance(max_claims, int) or max_claims < 1:
            raise ValidationError("max_claims must be a positive integer", {"max_claims": max_claims})
        if total_amount // max_claims == 0:
            raise ValidationError(
                f"Amount too small to split into {max_claims} claims",
                {"total_amount": total_amount, "max_claims": max_claims},
            )
        duration_hours = duration_hours or self.settings.loot_default_duration_hours
        if duration_hours <= 0:
            raise ValidationError("duration_hours must be positive")

        now = utcnow()
        event_no = generate_event_no("LOOT")
        await self.ledger.debit(
            creator_id, asset, total_amount, TransactionReason.LOOT, {"event_no": event_no}
        )

        event = LootEvent(
            event_no=event_no,
            creator_id=creator_id,
            asset=asset,
            total_amount=total_amount,
            max_claims=max_claims,
            loot_type=loot_type,
            message=message,
            min_role=min_role,
            channel_id=channel_id,
            status=PromotionStatus.ACTIVE,
            created_at=now,
            expires_at=now + timedelta(hours=duration_hours),
        )
        try:
            event = await self.store.create_loot_event(event)
        except Exception as e:
            logger.error(f"Loot {event_no}: could not store event, refunding: {e}", exc_info=True)
            await self._refund(event, total_amount, {"error": str(e)})
            raise

        logger.info(
            f"Loot {event_no}: {creator_id} dropped {total_amount} {asset} "
            f"for {max_claims} claims, expires {event.expires_at}"
        )
        return event

    # =========================================================================
    # Claim
    # =========================================================================

    async def claim(self, event_no: str, user_id: str) -> LootClaimResult:
        """Claim a share of a loot event.

        Raises:
            LootClaimError: Not found, not active, expired, full, already claimed
        """
        validate_identity(user_id)
        claim, event = await self.store.claim_loot(event_no, user_id, utcnow())

        try:
            balance_after = await self.ledger.credit(
                user_id,
                event.asset,
                claim.amount,
                TransactionReason.LOOT_CLAIM,
                {"event_no": event_no, "from": event.creator_id},
            )
        except Exception as e:
            logger.error(f"Loot {event_no}: credit to {user_id} failed: {e}", exc_info=True)
            await self.ledger.record_reconciliation(
                ReconciliationKind.LOOT_CREDIT_FAILED,
                user_id,
                event.asset,
                claim.amount,
                {"event_no": event_no, "error": str(e)},
            )
            raise

        logger.info(f"Loot {event_no}: {user_id} claimed {claim.amount} {event.asset}")

        if event.status == PromotionStatus.COMPLETED and event.refunded_amount > 0:
            # Capacity reached; only this claim observes the transition
            await self._refund(event, event.refunded_amount)

        return LootClaimResult(claim=claim, event=event, balance_after=balance_after)

    # =========================================================================
    # Expiry Sweep
    # =========================================================================

    async def sweep_expired(self, now: datetime | None = None) -> SweepStats:
        """Refund and close every expired active event. Safe to run concurrently."""
        now = now or utcnow()
        stats = SweepStats()

        for candidate in await self.store.list_expired_loot_events(now):
            try:
                event = await self.store.expire_loot_event(candidate.event_no, now)
                if event is None:
                    # Another sweeper or the final claim got there first
                    continue
                if event.refunded_amount > 0:
                    await self._refund(event, event.refunded_amount)
                await self.store.complete_loot_event(event.event_no)
                stats.expired += 1
                stats.refunded_amount += event.refunded_amount
                logger.info(
                    f"Loot {event.event_no} expired: {event.claim_count}/{event.max_claims} "
                    f"claimed, refunded {event.refunded_amount} {event.asset}"
                )
            except Exception as e:
                logger.error(f"Error sweeping loot {candidate.event_no}: {e}", exc_info=True)
                stats.errors.append(f"{candidate.event_no}: {e}")

        return stats

    async def _refund(
        self, event: LootEvent, amount: int, extra: dict[str, Any] | None = None
    ) -> None:
        """Credit ``amount`` back to the creator.

        A REFUND_PENDING record is opened before the credit and resolved after
        it. If the process dies in between, or the credit fails, the record
        stays open for an operator.
        """
        metadata = {"event_no": event.event_no, **(extra or {})}
        try:
            pending = await self.store.add_reconciliation(
                ReconciliationRecord(
                    kind=ReconciliationKind.REFUND_PENDING,
                    identity=event.creator_id,
                    asset=event.asset,
                    amount=amount,
                    details=metadata,
                )
            )
        except Exception as e:
            logger.error(f"Loot {event.event_no}: could not open pending refund: {e}", exc_info=True)
            pending = None

        try:
            await self.ledger.credit(
                event.creator_id, event.asset, amount, TransactionReason.LOOT_REFUND, metadata
            )
        except Exception as e:
            logger.error(f"Loot {event.event_no}: refund failed: {e}", exc_info=True)
            if pending is None:
                await self.ledger.record_reconciliation(
                    ReconciliationKind.REFUND_CREDIT_FAILED,
                    event.creator_id,
                    event.asset,
                    amount,
                    {**metadata, "error": str(e)},
                )
            return

        if pending is not None:
            try:
                await self.store.resolve_reconciliation(pending.id)
            except Exception as e:
                logger.error(
                    f"Loot {event.event_no}: refund credited but pending record "
                    f"{pending.id} is still open: {e}",
                    exc_info=True,
                )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_loot(self, event_no: str) -> LootEvent | None:
        return await self.store.get_loot_event(event_no)

    async def list_active_loot(self, limit: int = 50) -> list[LootEvent]:
        now = utcnow()
        events = await self.store.list_loot_events(PromotionStatus.ACTIVE, limit)
        return [e for e in events if not e.is_expired(now)]

    async def list_claims(self, event_no: str) -> list[LootClaim]:
        return await self.store.list_loot_claims(event_no)
