"""Hedvac Tip Bot - Deposit poller.

Watches the vault account on the mirror node and credits each inbound
transfer exactly once to the identity named in its memo.

Cycle:
1. Retry parked transfers by id
2. Fetch transactions after (cursor - rescan overlap), ascending
3. Per transaction: filter, dedup, attribute by memo, apply + mark in one commit
4. Park each transfer that fails (a DEPOSIT_APPLY_FAILED reconciliation
   record) and advance the cursor to the highest settled timestamp

Cycles never overlap in one poller. A failing transfer cannot hold back the
ones after it: it is retried by id until it settles. Only when it cannot even
be parked does the cursor stay below it. The processed-transfer marker makes
any re-delivery harmless.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from hedvac.core.config import get_settings
from hedvac.core.exceptions import DuplicateTransferError, ExternalServiceUnavailableError
from hedvac.hedera.mirror import MirrorNodeClient, MirrorTransaction
from hedvac.models import ReconciliationKind, ReconciliationRecord
from hedvac.services.notification_service import (
    Notifier,
    display_amount,
    format_deposit_message,
    notify,
)
from hedvac.storage.base import LedgerStore
from hedvac.utils.amount import NATIVE_ASSET
from hedvac.utils.helpers import (
    consensus_timestamp_from_datetime,
    is_valid_identity,
    parse_consensus_timestamp,
    shift_consensus_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFERRED_SCAN_LIMIT = 500


class TransferOutcome(str, Enum):
    """How one mirror transaction was settled in a cycle."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"  # permanently: not a deposit, or unattributable
    FAILED = "failed"  # transiently: parked and retried by id


@dataclass
class PollStats:
    """Result of one polling cycle."""

    fetched: int = 0
    applied: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    recovered: int = 0
    cursor: str | None = None
    errors: list[str] = field(default_factory=list)


class DepositPoller:
    """Applies vault deposits from the mirror node to the ledger."""

    def __init__(
        self,
        store: LedgerStore,
        mirror: MirrorNodeClient,
        vault_account_id: str | None = None,
        notifier: Notifier | None = None,
    ):
        self.settings = get_settings()
        self.store = store
        self.mirror = mirror
        self.vault_account_id = vault_account_id or self.settings.hedera_operator_id
        if not self.vault_account_id:
            raise ValueError("Vault account id (HEDERA_OPERATOR_ID) is not configured")
        self.notifier = notifier

        self._polling = False
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_polling(self) -> bool:
        return self._polling

    # =========================================================================
    # Timer loop
    # =========================================================================

    def start(self) -> None:
        """Begin polling after the start delay, then every poll interval."""
        if self._task and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="deposit-poller")
        logger.info(f"Starting deposit poller for vault {self.vault_account_id}")

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight cycle finish."""
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("Deposit poller stopped")

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first; True if stopping."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        if await self._sleep(self.settings.deposit_poll_start_delay_seconds):
            return
        while True:
            await self.safe_poll()
            if await self._sleep(self.settings.deposit_poll_interval_seconds):
                return

    # =========================================================================
    # Cycle
    # =========================================================================

    async def safe_poll(self) -> PollStats | None:
        """Run one cycle unless one is already in flight. Never raises."""
        if self._polling:
            logger.debug("Previous deposit poll still running, skipping")
            return None

        self._polling = True
        try:
            return await self.poll_once()
        except Exception as e:
            logger.error(f"Deposit polling error: {e}", exc_info=True)
            return None
        finally:
            self._polling = False

    async def _fetch(self, after: str) -> list[MirrorTransaction]:
        transactions = await self.mirror.list_vault_transactions(
            self.vault_account_id,
            after=after,
            limit=self.settings.deposit_page_limit,
            max_pages=self.settings.deposit_max_pages,
        )
        transactions.sort(key=lambda tx: parse_consensus_timestamp(tx.consensus_timestamp))
        return transactions

    async def _fetch_after_cursor(self) -> list[MirrorTransaction]:
        """Transactions from the scan start, always reaching past the cursor.

        If the overlap window alone fills a whole fetch, it is fetched again
        from the cursor itself so the cycle can make progress.
        """
        cursor = await self.store.get_cursor()
        if cursor is None:
            lookback = timedelta(minutes=self.settings.deposit_initial_lookback_minutes)
            return await self._fetch(consensus_timestamp_from_datetime(utcnow() - lookback))

        overlap = self.settings.deposit_rescan_overlap_seconds
        if not overlap:
            return await self._fetch(cursor)

        transactions = await self._fetch(shift_consensus_timestamp(cursor, -overlap))
        capacity = self.settings.deposit_page_limit * self.settings.deposit_max_pages
        if len(transactions) >= capacity and parse_consensus_timestamp(
            transactions[-1].consensus_timestamp
        ) <= parse_consensus_timestamp(cursor):
            logger.debug("Rescan overlap filled the fetch, scanning from the cursor")
            transactions = await self._fetch(cursor)
        return transactions

    async def poll_once(self) -> PollStats:
        """Retry parked transfers, then fetch, apply and advance the cursor once."""
        stats = PollStats()
        deferred = await self._deferred_deposits()
        await self._retry_deferred(deferred, stats)

        try:
            transactions = await self._fetch_after_cursor()
        except ExternalServiceUnavailableError as e:
            logger.warning(f"Mirror node unavailable, retrying next cycle: {e}")
            stats.errors.append(str(e))
            return stats

        stats.fetched = len(transactions)
        if not transactions:
            stats.cursor = await self.store.get_cursor()
            return stats

        semaphore = asyncio.Semaphore(self.settings.deposit_max_concurrency)

        async def settle(tx: MirrorTransaction) -> TransferOutcome:
            async with semaphore:
                return await self.process_transaction(tx)

        outcomes = await asyncio.gather(*(settle(tx) for tx in transactions))

        settled_through: str | None = None
        blocked = False
        for tx, outcome in zip(transactions, outcomes, strict=True):
            if outcome == TransferOutcome.APPLIED:
                stats.applied += 1
            elif outcome == TransferOutcome.DUPLICATE:
                stats.duplicates += 1
            elif outcome == TransferOutcome.SKIPPED:
                stats.skipped += 1
            else:
                stats.failed += 1
                stats.errors.append(f"{tx.transaction_id} failed")
                # Parked transfers are retried by id; only an unparked one holds the cursor
                if not blocked and await self._defer(tx, deferred):
                    stats.deferred += 1
                else:
                    blocked = True
            if not blocked:
                settled_through = tx.consensus_timestamp

        if settled_through and await self.store.advance_cursor(settled_through):
            stats.cursor = settled_through
        else:
            stats.cursor = await self.store.get_cursor()

        if stats.applied or stats.failed or stats.recovered:
            logger.info(
                f"Deposit poll: {stats.applied} applied, {stats.duplicates} duplicate, "
                f"{stats.skipped} skipped, {stats.failed} failed, "
                f"{stats.recovered} recovered; cursor={stats.cursor}"
            )
        return stats

    # =========================================================================
    # Parked transfers
    # =========================================================================

    async def _deferred_deposits(self) -> dict[str, ReconciliationRecord]:
        """Open DEPOSIT_APPLY_FAILED records by transfer id."""
        records = await self.store.list_reconciliation(resolved=False, limit=DEFERRED_SCAN_LIMIT)
        return {
            record.details["transfer_id"]: record
            for record in records
            if record.kind == ReconciliationKind.DEPOSIT_APPLY_FAILED
            and record.details.get("transfer_id")
        }

    async def _defer(
        self, tx: MirrorTransaction, deferred: dict[str, ReconciliationRecord]
    ) -> bool:
        """Park a failing transfer so the cursor can move past it.

        Returns False if it could not be recorded; the cursor must then stay
        below it.
        """
        if tx.transaction_id in deferred:
            return True

        legs = tx.received_by(self.vault_account_id)
        asset, amount = legs[0] if legs else (NATIVE_ASSET, 0)
        record = ReconciliationRecord(
            kind=ReconciliationKind.DEPOSIT_APPLY_FAILED,
            identity=self.attribute(tx) or "",
            asset=asset,
            amount=amount,
            details={
                "transfer_id": tx.transaction_id,
                "consensus_timestamp": tx.consensus_timestamp,
                "legs": [[leg_asset, leg_amount] for leg_asset, leg_amount in legs],
            },
        )
        try:
            deferred[tx.transaction_id] = await self.store.add_reconciliation(record)
        except Exception as e:
            logger.error(
                f"Could not park deposit {tx.transaction_id}, holding the cursor: {e}",
                exc_info=True,
            )
            return False

        logger.warning(f"Deposit {tx.transaction_id} parked for retry by id")
        return True

    async def _retry_deferred(
        self, deferred: dict[str, ReconciliationRecord], stats: PollStats
    ) -> None:
        """Re-fetch parked transfers by id and settle them; resolve what settles."""
        for transfer_id, record in list(deferred.items()):
            try:
                tx = await self.mirror.get_transaction(transfer_id)
            except ExternalServiceUnavailableError as e:
                logger.warning(f"Parked deposit {transfer_id} not re-fetched: {e}")
                continue
            if tx is None:
                logger.warning(f"Parked deposit {transfer_id} not found on the mirror node")
                continue

            outcome = await self.process_transaction(tx)
            if outcome == TransferOutcome.FAILED:
                continue

            try:
                await self.store.resolve_reconciliation(record.id)
            except Exception as e:
                logger.error(f"Could not resolve parked deposit {transfer_id}: {e}", exc_info=True)
                continue
            del deferred[transfer_id]
            stats.recovered += 1
            logger.info(f"Parked deposit {transfer_id} settled: {outcome.value}")

    # =========================================================================
    # Single transaction
    # =========================================================================

    def attribute(self, tx: MirrorTransaction) -> str | None:
        """Identity named by the memo, or None if it is not a numeric id."""
        if tx.memo and is_valid_identity(tx.memo):
            return tx.memo
        return None

    async def process_transaction(self, tx: MirrorTransaction) -> TransferOutcome:
        """Settle one mirror transaction. Never raises."""
        try:
            if not tx.is_successful_transfer:
                return TransferOutcome.SKIPPED

            if await self.store.is_transfer_processed(tx.transaction_id):
                return TransferOutcome.DUPLICATE

            legs = tx.received_by(self.vault_account_id)
            if not legs:
                # Outgoing (e.g. a withdrawal) or zero-value
                return TransferOutcome.SKIPPED

            identity = self.attribute(tx)
            if identity is None:
                logger.warning(
                    f"Unattributable deposit {tx.transaction_id} (memo={tx.memo!r}), "
                    f"left in vault: {legs}"
                )
                return TransferOutcome.SKIPPED

            if self.settings.deposit_require_registration and (
                await self.store.get_account(identity) is None
            ):
                logger.warning(
                    f"Deposit {tx.transaction_id} names unregistered identity {identity}, "
                    f"left in vault: {legs}"
                )
                return TransferOutcome.SKIPPED

            try:
                await self.store.apply_deposit(
                    identity, tx.transaction_id, tx.consensus_timestamp, legs
                )
            except DuplicateTransferError:
                return TransferOutcome.DUPLICATE

            logger.info(f"Deposit {tx.transaction_id} credited to {identity}: {legs}")
        except Exception as e:
            logger.error(f"Error processing transaction {tx.transaction_id}: {e}", exc_info=True)
            return TransferOutcome.FAILED

        await self._notify_deposit(identity, tx.transaction_id, legs)
        return TransferOutcome.APPLIED

    async def _notify_deposit(
        self, identity: str, transaction_id: str, legs: list[tuple[str, int]]
    ) -> None:
        if self.notifier is None:
            return
        try:
            for asset, amount in legs:
                shown, asset_name = await display_amount(asset, amount, self.mirror)
                await notify(
                    self.notifier, identity, format_deposit_message(shown, asset_name, transaction_id)
                )
        except Exception as e:
            logger.warning(f"Deposit notification for {transaction_id} failed: {e}")


def create_deposit_poller() -> DepositPoller:
    """Poller wired from settings: configured store, mirror node and notifier."""
    from hedvac.hedera import get_mirror_client
    from hedvac.services.notification_service import get_notifier
    from hedvac.storage.factory import get_ledger_store

    return DepositPoller(get_ledger_store(), get_mirror_client(), notifier=get_notifier())
