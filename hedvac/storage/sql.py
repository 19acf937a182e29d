"""Relational ledger store on SQLModel / async SQLAlchemy.

Balance changes are single conditional UPDATE statements, so the
non-negative check and the subtraction cannot be separated by a concurrent
writer. Every public method runs in its own transaction.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import select

from hedvac.core.exceptions import DuplicateTransferError, InsufficientFundsError, LootClaimError
from hedvac.db.engine import build_session_factory, init_db
from hedvac.models import (
    RESUME_CURSOR_KEY,
    Account,
    AccountBalance,
    BotSetting,
    LedgerTransaction,
    LootClaim,
    LootEvent,
    ProcessedTransfer,
    PromotionStatus,
    RainEvent,
    ReconciliationRecord,
    TransactionReason,
)
from hedvac.storage.base import LedgerStore
from hedvac.utils.helpers import parse_consensus_timestamp, utcnow

logger = logging.getLogger(__name__)


class SQLLedgerStore(LedgerStore):
    """LedgerStore backed by SQLite, MySQL or PostgreSQL."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        create_tables: bool = True,
    ):
        self.engine = engine
        self.session_factory = session_factory or build_session_factory(engine)
        self.create_tables = create_tables

    @property
    def backend(self) -> str:
        return "sql"

    async def initialize(self) -> None:
        if not self.create_tables:
            return
        await init_db(self.engine)
        logger.info("SQL ledger store initialized")

    async def close(self) -> None:
        await self.engine.dispose()

    # =========================================================================
    # Internal helpers (caller owns the transaction)
    # =========================================================================

    async def _ensure_account(
        self, session: AsyncSession, identity: str, now: datetime
    ) -> None:
        result = await session.execute(
            update(Account)
            .where(Account.identity == identity)
            .values(updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return
        try:
            async with session.begin_nested():
                session.add(Account(identity=identity, created_at=now, updated_at=now))
        except IntegrityError:
            # Created concurrently
            pass

    async def _read_balance(self, session: AsyncSession, identity: str, asset: str) -> int:
        balance = await session.scalar(
            select(AccountBalance.balance).where(
                AccountBalance.identity == identity,
                AccountBalance.asset == asset,
            )
        )
        return int(balance or 0)

    async def _add_to_balance(
        self, session: AsyncSession, identity: str, asset: str, amount: int, now: datetime
    ) -> int:
        increment = (
            update(AccountBalance)
            .where(AccountBalance.identity == identity, AccountBalance.asset == asset)
            .values(balance=AccountBalance.balance + amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(increment)
        if not result.rowcount:
            try:
                async with session.begin_nested():
                    session.add(
                        AccountBalance(identity=identity, asset=asset, balance=amount, updated_at=now)
                    )
            except IntegrityError:
                # Row appeared between the UPDATE and the INSERT
                await session.execute(increment)
        return await self._read_balance(session, identity, asset)

    async def _credit(
        self,
        session: AsyncSession,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None,
    ) -> LedgerTransaction:
        now = utcnow()
        await self._ensure_account(session, identity, now)
        balance_after = await self._add_to_balance(session, identity, asset, amount, now)
        record = LedgerTransaction(
            identity=identity,
            asset=asset,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
            details=details or {},
            created_at=now,
        )
        session.add(record)
        await session.flush()
        return record

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_account(self, identity: str) -> Account | None:
        async with self.session_factory() as session:
            return await session.get(Account, identity)

    async def upsert_account(
        self, identity: str, hedera_account_id: str | None = None
    ) -> Account:
        async with self.session_factory() as session, session.begin():
            now = utcnow()
            await self._ensure_account(session, identity, now)
            account = await session.get(Account, identity, populate_existing=True)
            if hedera_account_id is not None:
                account.hedera_account_id = hedera_account_id
                account.updated_at = now
        return account

    async def get_balance(self, identity: str, asset: str) -> int:
        async with self.session_factory() as session:
            return await self._read_balance(session, identity, asset)

    async def get_balances(self, identity: str) -> dict[str, int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AccountBalance.asset, AccountBalance.balance)
                .where(AccountBalance.identity == identity, AccountBalance.balance > 0)
                .order_by(AccountBalance.asset)
            )
            return {asset: int(balance) for asset, balance in result.all()}

    # =========================================================================
    # Balance Mutations
    # =========================================================================

    async def apply_credit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None = None,
    ) -> LedgerTransaction:
        async with self.session_factory() as session, session.begin():
            return await self._credit(session, identity, asset, amount, reason, details)

    async def apply_debit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None = None,
    ) -> LedgerTransaction:
        async with self.session_factory() as session, session.begin():
            now = utcnow()
            result = await session.execute(
                update(AccountBalance)
                .where(
                    AccountBalance.identity == identity,
                    AccountBalance.asset == asset,
                    AccountBalance.balance >= amount,
                )
                .values(balance=AccountBalance.balance - amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                available = await self._read_balance(session, identity, asset)
                raise InsufficientFundsError(asset, amount, available)

            await session.execute(
                update(Account)
                .where(Account.identity == identity)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )
            record = LedgerTransaction(
                identity=identity,
                asset=asset,
                amount=-amount,
                balance_after=await self._read_balance(session, identity, asset),
                reason=reason,
                details=details or {},
                created_at=now,
            )
            session.add(record)
        return record

    async def apply_deposit(
        self,
        identity: str,
        transfer_id: str,
        consensus_timestamp: str | None,
        legs: list[tuple[str, int]],
    ) -> list[LedgerTransaction]:
        try:
            async with self.session_factory() as session, session.begin():
                if await session.get(ProcessedTransfer, transfer_id):
                    raise DuplicateTransferError(transfer_id)
                session.add(
                    ProcessedTransfer(
                        transfer_id=transfer_id,
                        consensus_timestamp=consensus_timestamp,
                        identity=identity,
                    )
                )
                await session.flush()

                records = []
                for asset, amount in legs:
                    details = {"transfer_id": transfer_id, "consensus_timestamp": consensus_timestamp}
                    records.append(
                        await self._credit(
                            session, identity, asset, amount, TransactionReason.DEPOSIT, details
                        )
                    )
        except IntegrityError as e:
            raise DuplicateTransferError(transfer_id) from e
        return records

    async def get_history(self, identity: str, limit: int = 50) -> list[LedgerTransaction]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LedgerTransaction)
                .where(LedgerTransaction.identity == identity)
                .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Deposit Tracking
    # =========================================================================

    async def is_transfer_processed(self, transfer_id: str) -> bool:
        async with self.session_factory() as session:
            return await session.get(ProcessedTransfer, transfer_id) is not None

    async def get_cursor(self) -> str | None:
        async with self.session_factory() as session:
            setting = await session.get(BotSetting, RESUME_CURSOR_KEY)
            return setting.value if setting else None

    async def advance_cursor(self, timestamp: str) -> bool:
        async with self.session_factory() as session, session.begin():
            setting = await session.get(BotSetting, RESUME_CURSOR_KEY, with_for_update=True)
            if setting is None:
                session.add(BotSetting(key=RESUME_CURSOR_KEY, value=timestamp))
                return True
            if setting.value and parse_consensus_timestamp(setting.value) >= parse_consensus_timestamp(
                timestamp
            ):
                return False
            setting.value = timestamp
            return True

    async def set_cursor(self, timestamp: str | None) -> None:
        async with self.session_factory() as session, session.begin():
            setting = await session.get(BotSetting, RESUME_CURSOR_KEY, with_for_update=True)
            if setting is None:
                session.add(BotSetting(key=RESUME_CURSOR_KEY, value=timestamp))
            else:
                setting.value = timestamp

    # =========================================================================
    # Rain
    # =========================================================================

    async def save_rain_event(self, event: RainEvent) -> RainEvent:
        async with self.session_factory() as session, session.begin():
            session.add(event)
        return event

    async def list_rain_events(
        self, creator_id: str | None = None, limit: int = 20
    ) -> list[RainEvent]:
        async with self.session_factory() as session:
            query = select(RainEvent)
            if creator_id:
                query = query.where(RainEvent.creator_id == creator_id)
            result = await session.execute(
                query.order_by(RainEvent.created_at.desc(), RainEvent.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Loot
    # =========================================================================

    async def create_loot_event(self, event: LootEvent) -> LootEvent:
        async with self.session_factory() as session, session.begin():
            session.add(event)
        return event

    async def _lock_loot(self, session: AsyncSession, event_no: str) -> LootEvent | None:
        return await session.scalar(
            select(LootEvent)
            .where(LootEvent.event_no == event_no)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    async def get_loot_event(self, event_no: str) -> LootEvent | None:
        async with self.session_factory() as session:
            return await session.scalar(select(LootEvent).where(LootEvent.event_no == event_no))

    async def list_loot_events(
        self, status: PromotionStatus | None = None, limit: int = 50
    ) -> list[LootEvent]:
        async with self.session_factory() as session:
            query = select(LootEvent)
            if status:
                query = query.where(LootEvent.status == status)
            result = await session.execute(
                query.order_by(LootEvent.created_at.desc(), LootEvent.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def list_expired_loot_events(self, now: datetime) -> list[LootEvent]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LootEvent)
                .where(
                    LootEvent.status == PromotionStatus.ACTIVE,
                    LootEvent.expires_at.is_not(None),
                    LootEvent.expires_at <= now,
                )
                .order_by(LootEvent.expires_at)
            )
            return list(result.scalars().all())

    async def claim_loot(
        self, event_no: str, user_id: str, now: datetime
    ) -> tuple[LootClaim, LootEvent]:
        try:
            async with self.session_factory() as session, session.begin():
                event = await self._lock_loot(session, event_no)
                if event is None:
                    raise LootClaimError(event_no, LootClaimError.NOT_FOUND)
                if event.status != PromotionStatus.ACTIVE:
                    raise LootClaimError(event_no, LootClaimError.NOT_ACTIVE)
                if event.is_expired(now):
                    raise LootClaimError(event_no, LootClaimError.EXPIRED)
                if event.claim_count >= event.max_claims:
                    raise LootClaimError(event_no, LootClaimError.FULL)

                existing = await session.scalar(
                    select(LootClaim.id).where(
                        LootClaim.event_no == event_no, LootClaim.user_id == user_id
                    )
                )
                if existing is not None:
                    raise LootClaimError(event_no, LootClaimError.ALREADY_CLAIMED)

                claim = LootClaim(
                    event_no=event_no,
                    user_id=user_id,
                    amount=event.amount_per_claim,
                    claimed_at=now,
                )
                session.add(claim)
                event.claim_count += 1
                event.claimed_amount += claim.amount
                if event.claim_count >= event.max_claims:
                    event.status = PromotionStatus.COMPLETED
                    event.refunded_amount = event.total_amount - event.claimed_amount
        except IntegrityError as e:
            raise LootClaimError(event_no, LootClaimError.ALREADY_CLAIMED) from e
        return claim, event

    async def expire_loot_event(self, event_no: str, now: datetime) -> LootEvent | None:
        async with self.session_factory() as session, session.begin():
            event = await self._lock_loot(session, event_no)
            if event is None or event.status != PromotionStatus.ACTIVE or not event.is_expired(now):
                return None
            event.status = PromotionStatus.EXPIRED
            event.refunded_amount = event.total_amount - event.claimed_amount
        return event

    async def complete_loot_event(self, event_no: str) -> bool:
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(LootEvent)
                .where(
                    LootEvent.event_no == event_no,
                    LootEvent.status == PromotionStatus.EXPIRED,
                )
                .values(status=PromotionStatus.COMPLETED)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)

    async def list_loot_claims(self, event_no: str) -> list[LootClaim]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LootClaim)
                .where(LootClaim.event_no == event_no)
                .order_by(LootClaim.claimed_at, LootClaim.id)
            )
            return list(result.scalars().all())

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def add_reconciliation(self, record: ReconciliationRecord) -> ReconciliationRecord:
        async with self.session_factory() as session, session.begin():
            session.add(record)
        return record

    async def list_reconciliation(
        self, resolved: bool | None = False, limit: int = 100
    ) -> list[ReconciliationRecord]:
        async with self.session_factory() as session:
            query = select(ReconciliationRecord)
            if resolved is not None:
                query = query.where(ReconciliationRecord.resolved == resolved)
            result = await session.execute(
                query.order_by(ReconciliationRecord.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def resolve_reconciliation(self, record_id: int) -> ReconciliationRecord | None:
        async with self.session_factory() as session, session.begin():
            record = await session.get(ReconciliationRecord, record_id, with_for_update=True)
            if record is None:
                return None
            if not record.resolved:
                record.resolved = True
                record.resolved_at = utcnow()
        return record
