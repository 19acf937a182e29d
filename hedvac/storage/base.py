"""Base ledger store interface.

Defines the abstract interface that every persistence backend must follow.
Services never touch a database directly; they go through a LedgerStore so
that the relational and the Redis backends behave identically.

Every mutating method is atomic: either all of its effects are visible or
none are.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from hedvac.models import (
    Account,
    LedgerTransaction,
    LootClaim,
    LootEvent,
    PromotionStatus,
    RainEvent,
    ReconciliationRecord,
    TransactionReason,
)


class LedgerStore(ABC):
    """Abstract base class for ledger persistence backends."""

    @property
    @abstractmethod
    def backend(self) -> str:
        """Return the backend name (e.g., 'sql', 'redis')."""
        pass

    async def initialize(self) -> None:
        """Prepare the backend (create tables, ping the server)."""

    async def close(self) -> None:
        """Release connections held by the backend."""

    # ============ Accounts ============

    @abstractmethod
    async def get_account(self, identity: str) -> Account | None:
        pass

    @abstractmethod
    async def upsert_account(
        self, identity: str, hedera_account_id: str | None = None
    ) -> Account:
        """Create the account if missing; set the linked address when given.

        Returns:
            The stored account
        """
        pass

    @abstractmethod
    async def get_balance(self, identity: str, asset: str) -> int:
        """Balance in smallest units; 0 for unknown accounts or assets."""
        pass

    @abstractmethod
    async def get_balances(self, identity: str) -> dict[str, int]:
        """All non-zero balances of an account keyed by asset."""
        pass

    # ============ Balance Mutations ============

    @abstractmethod
    async def apply_credit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None = None,
    ) -> LedgerTransaction:
        """Add ``amount`` to a balance and record it, creating the account lazily.

        Returns:
            The ledger record, with ``balance_after`` set
        """
        pass

    @abstractmethod
    async def apply_debit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None = None,
    ) -> LedgerTransaction:
        """Subtract ``amount`` only if the balance covers it.

        The check and the subtraction are one atomic step.

        Raises:
            InsufficientFundsError: Balance is lower than ``amount``
        """
        pass

    @abstractmethod
    async def apply_deposit(
        self,
        identity: str,
        transfer_id: str,
        consensus_timestamp: str | None,
        legs: list[tuple[str, int]],
    ) -> list[LedgerTransaction]:
        """Credit every (asset, amount) leg and mark the transfer processed.

        The credits and the processed marker are committed together.

        Raises:
            DuplicateTransferError: The transfer was already applied
        """
        pass

    @abstractmethod
    async def get_history(self, identity: str, limit: int = 50) -> list[LedgerTransaction]:
        """Most recent ledger records first."""
        pass

    # ============ Deposit Tracking ============

    @abstractmethod
    async def is_transfer_processed(self, transfer_id: str) -> bool:
        pass

    @abstractmethod
    async def get_cursor(self) -> str | None:
        """Consensus timestamp of the last fully processed transaction."""
        pass

    @abstractmethod
    async def advance_cursor(self, timestamp: str) -> bool:
        """Store ``timestamp`` only if it is later than the stored one.

        Returns:
            True if the cursor moved
        """
        pass

    @abstractmethod
    async def set_cursor(self, timestamp: str | None) -> None:
        """Overwrite the cursor (operator action; may move backwards)."""
        pass

    # ============ Rain ============

    @abstractmethod
    async def save_rain_event(self, event: RainEvent) -> RainEvent:
        pass

    @abstractmethod
    async def list_rain_events(
        self, creator_id: str | None = None, limit: int = 20
    ) -> list[RainEvent]:
        """Newest first."""
        pass

    # ============ Loot ============

    @abstractmethod
    async def create_loot_event(self, event: LootEvent) -> LootEvent:
        pass

    @abstractmethod
    async def get_loot_event(self, event_no: str) -> LootEvent | None:
        pass

    @abstractmethod
    async def list_loot_events(
        self, status: PromotionStatus | None = None, limit: int = 50
    ) -> list[LootEvent]:
        """Newest first, optionally filtered by status."""
        pass

    @abstractmethod
    async def list_expired_loot_events(self, now: datetime) -> list[LootEvent]:
        """Active events whose expiry is at or before ``now``."""
        pass

    @abstractmethod
    async def claim_loot(
        self, event_no: str, user_id: str, now: datetime
    ) -> tuple[LootClaim, LootEvent]:
        """Record one claim and bump the event counters atomically.

        When the claim reaches ``max_claims`` the event becomes COMPLETED and
        ``refunded_amount`` is set to the unclaimed remainder in the same step.

        Returns:
            (claim, event after the update)

        Raises:
            LootClaimError: Not found, not active, expired, full, or already claimed
        """
        pass

    @abstractmethod
    async def expire_loot_event(self, event_no: str, now: datetime) -> LootEvent | None:
        """Move an expired ACTIVE event to EXPIRED, fixing ``refunded_amount``.

        Returns:
            The updated event if this call performed the transition, else None
        """
        pass

    @abstractmethod
    async def complete_loot_event(self, event_no: str) -> bool:
        """Move an EXPIRED event to COMPLETED."""
        pass

    @abstractmethod
    async def list_loot_claims(self, event_no: str) -> list[LootClaim]:
        """Claims in claim order."""
        pass

    # ============ Reconciliation ============

    @abstractmethod
    async def add_reconciliation(self, record: ReconciliationRecord) -> ReconciliationRecord:
        pass

    @abstractmethod
    async def list_reconciliation(
        self, resolved: bool | None = False, limit: int = 100
    ) -> list[ReconciliationRecord]:
        """Newest first; ``resolved=None`` returns both."""
        pass

    @abstractmethod
    async def resolve_reconciliation(self, record_id: int) -> ReconciliationRecord | None:
        """Mark a record resolved; None if it does not exist."""
        pass
