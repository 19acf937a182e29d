"""Rain Service - Split a pool evenly among recently active users, immediately.

The creator's full commitment is debited first; if that fails nothing is
distributed. Each recipient gets ``total // N``; the remainder goes back to
the creator, so credits always add up to the debit.
"""

import inspect
import logging
import random
from dataclasses import dataclass, field

from hedvac.core.config import get_settings
from hedvac.core.exceptions import NoEligibleRecipientsError, ValidationError
from hedvac.hedera.mirror import MirrorNodeClient
from hedvac.models import (
    PromotionStatus,
    RainEvent,
    ReconciliationKind,
    TransactionReason,
    generate_event_no,
)
from hedvac.services.activity_service import ActivityProvider
from hedvac.services.ledger_service import (
    LedgerService,
    validate_amount,
    validate_asset,
    validate_identity,
)
from hedvac.services.notification_service import Notifier, display_amount, format_rain_message, notify
from hedvac.storage.base import LedgerStore
from hedvac.utils.helpers import is_valid_identity

logger = logging.getLogger(__name__)


@dataclass
class RainResult:
    """What a rain did."""

    event: RainEvent
    amount_each: int
    recipients: list[str] = field(default_factory=list)
    failed_recipients: list[str] = field(default_factory=list)

    @property
    def refunded(self) -> int:
        return self.event.refunded_amount


class RainService:
    """Service for rain distributions."""

    def __init__(
        self,
        store: LedgerStore,
        activity: ActivityProvider,
        notifier: Notifier | None = None,
        mirror: MirrorNodeClient | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.ledger = LedgerService(store)
        self.activity = activity
        self.notifier = notifier
        self.mirror = mirror
        self.rng = rng or random.SystemRandom()
        self.settings = get_settings()

    async def _eligible(self, creator_id: str, scope: str, window_minutes: int) -> list[str]:
        active = self.activity.get_active_identities(scope, window_minutes)
        if inspect.isawaitable(active):
            active = await active
        eligible = sorted(i for i in active if i != creator_id and is_valid_identity(i))
        self.rng.shuffle(eligible)
        return eligible

    async def make_it_rain(
        self,
        creator_id: str,
        asset: str,
        total_amount: int,
        scope: str,
        window_minutes: int | None = None,
        max_recipients: int | None = None,
        min_role: str | None = None,
        message: str | None = None,
    ) -> RainResult:
        """Distribute ``total_amount`` to up to ``max_recipients`` active users.

        Args:
            creator_id: Identity paying for the rain
            asset: HBAR or token id
            total_amount: Pool in smallest units
            scope: Guild whose activity decides eligibility
            window_minutes: How recent "active" is
            max_recipients: Upper bound on recipients
            min_role: Recorded on the event; role filtering is up to the activity provider
            message: Free text shown with the rain

        Raises:
            NoEligibleRecipientsError: Nobody else was active
            ValidationError: Pool too small for one unit per recipient
            InsufficientFundsError: Creator cannot cover the pool
        """
        validate_identity(creator_id)
        validate_asset(asset)
        validate_amount(total_amount)
        window_minutes = window_minutes or self.settings.rain_default_window_minutes
        max_recipients = max_recipients or self.settings.rain_default_max_recipients
        if max_recipients < 1:
            raise ValidationError("max_recipients must be at least 1")

        eligible = await self._eligible(creator_id, scope, window_minutes)
        recipients = eligible[:max_recipients]
        if not recipients:
            raise NoEligibleRecipientsError(
                f"No active users in the last {window_minutes} minutes",
                {"scope": scope, "window_minutes": window_minutes},
            )

        amount_each = total_amount // len(recipients)
        if amount_each == 0:
            raise ValidationError(
                f"Amount too small to split among {len(recipients)} users",
                {"total_amount": total_amount, "recipients": len(recipients)},
            )

        event_no = generate_event_no("RAIN")
        metadata = {"event_no": event_no}
        await self.ledger.debit(creator_id, asset, total_amount, TransactionReason.RAIN, metadata)

        result = RainResult(
            event=RainEvent(
                event_no=event_no,
                creator_id=creator_id,
                asset=asset,
                amount=total_amount,
                duration_minutes=window_minutes,
                min_role=min_role,
                message=message,
                status=PromotionStatus.COMPLETED,
            ),
            amount_each=amount_each,
        )

        for recipient in recipients:
            try:
                await self.ledger.credit(
                    recipient,
                    asset,
                    amount_each,
                    TransactionReason.RAIN_RECEIVE,
                    {**metadata, "from": creator_id},
                )
                result.recipients.append(recipient)
            except Exception as e:
                logger.error(f"Rain {event_no}: credit to {recipient} failed: {e}", exc_info=True)
                result.failed_recipients.append(recipient)
                await self.ledger.record_reconciliation(
                    ReconciliationKind.RAIN_CREDIT_FAILED,
                    recipient,
                    asset,
                    amount_each,
                    {**metadata, "from": creator_id, "error": str(e)},
                )

        remainder = total_amount - amount_each * len(recipients)
        if remainder:
            try:
                await self.ledger.credit(
                    creator_id, asset, remainder, TransactionReason.RAIN_REFUND, metadata
                )
            except Exception as e:
                logger.error(f"Rain {event_no}: remainder refund failed: {e}", exc_info=True)
                await self.ledger.record_reconciliation(
                    ReconciliationKind.REFUND_CREDIT_FAILED,
                    creator_id,
                    asset,
                    remainder,
                    {**metadata, "error": str(e)},
                )

        event = result.event
        event.distributed_amount = amount_each * len(result.recipients)
        event.recipient_count = len(result.recipients)
        event.refunded_amount = remainder
        try:
            result.event = await self.store.save_rain_event(event)
        except Exception:
            # Funds already moved; the ledger records carry the event number
            logger.exception(f"Rain {event_no}: could not save event record")

        logger.info(
            f"Rain {event_no}: {creator_id} sent {amount_each} {asset} to "
            f"{len(result.recipients)} users (remainder {remainder})"
        )

        shown, asset_name = await display_amount(asset, amount_each, self.mirror)
        for recipient in result.recipients:
            await notify(self.notifier, recipient, format_rain_message(creator_id, shown, asset_name))

        return result

    async def rain_history(self, creator_id: str | None = None, limit: int = 20) -> list[RainEvent]:
        """Most recent rains first, optionally only those by ``creator_id``."""
        return await self.store.list_rain_events(creator_id, limit)
