"""Ledger Service - Business logic for custodial balances.

This service is the only writer of account balances:
1. Balance Queries - single asset, all assets, history
2. Balance Mutations - credit, debit and account-to-account transfer
3. Accounts - registration, address linking, deposit instructions
4. Reconciliation - records for debits whose paired credit failed

Every mutation is paired with a LedgerTransaction written in the same store
commit. Amounts are integers in the asset's smallest unit.
"""

import logging
from dataclasses import dataclass
from typing import Any

from hedvac.core.config import get_settings
from hedvac.core.exceptions import (
    AccountNotFoundError,
    InvalidAddressError,
    ValidationError,
)
from hedvac.models import (
    Account,
    LedgerTransaction,
    ReconciliationKind,
    ReconciliationRecord,
    TransactionReason,
)
from hedvac.storage.base import LedgerStore
from hedvac.utils.amount import NATIVE_ASSET
from hedvac.utils.helpers import is_valid_hedera_account, is_valid_identity

logger = logging.getLogger(__name__)

# Debit reason -> reason recorded on the receiving side of a transfer
CREDIT_REASONS = {
    TransactionReason.SEND: TransactionReason.RECEIVE,
    TransactionReason.RAIN: TransactionReason.RAIN_RECEIVE,
    TransactionReason.LOOT: TransactionReason.LOOT_CLAIM,
}


@dataclass
class DepositInstructions:
    """Where and how a user sends funds to be credited."""

    vault_account_id: str
    memo: str
    network: str


def validate_amount(amount: Any) -> int:
    """Reject anything but a positive integer amount of smallest units."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Amount must be an integer, got {amount!r}", {"amount": amount})
    if amount <= 0:
        raise ValidationError(f"Amount must be positive, got {amount}", {"amount": amount})
    return amount


def validate_asset(asset: str) -> str:
    """HBAR or a token id (0.0.N)."""
    if asset != NATIVE_ASSET and not is_valid_hedera_account(asset):
        raise ValidationError(f"Unknown asset: {asset!r}", {"asset": asset})
    return asset


def validate_identity(identity: str) -> str:
    if not is_valid_identity(identity):
        raise ValidationError(f"Invalid identity: {identity!r}", {"identity": identity})
    return identity


class LedgerService:
    """Service for balance ledger business logic."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.settings = get_settings()

    # =========================================================================
    # Balance Queries
    # =========================================================================

    async def get_balance(self, identity: str, asset: str = NATIVE_ASSET) -> int:
        """Balance in smallest units; 0 for unknown identities or assets."""
        return await self.store.get_balance(identity, asset)

    async def get_balances(self, identity: str) -> dict[str, int]:
        return await self.store.get_balances(identity)

    async def get_history(self, identity: str, limit: int = 50) -> list[LedgerTransaction]:
        """Most recent records first."""
        if limit <= 0:
            raise ValidationError("limit must be positive", {"limit": limit})
        return await self.store.get_history(identity, limit)

    # =========================================================================
    # Balance Mutations
    # =========================================================================

    async def credit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Add funds, creating the account if needed.

        Returns:
            New balance
        """
        validate_identity(identity)
        validate_asset(asset)
        validate_amount(amount)
        record = await self.store.apply_credit(identity, asset, amount, reason, metadata)
        logger.debug(f"Credited {amount} {asset} to {identity} ({reason.value})")
        return record.balance_after

    async def debit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Remove funds if the balance covers them.

        Returns:
            New balance

        Raises:
            InsufficientFundsError: Balance is lower than ``amount``
        """
        validate_identity(identity)
        validate_asset(asset)
        validate_amount(amount)
        record = await self.store.apply_debit(identity, asset, amount, reason, metadata)
        logger.debug(f"Debited {amount} {asset} from {identity} ({reason.value})")
        return record.balance_after

    async def transfer(
        self,
        from_identity: str,
        to_identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason = TransactionReason.SEND,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[int, int]:
        """Move funds between two accounts: debit the sender, then credit the receiver.

        If the credit fails after the debit succeeded, a reconciliation record
        is written and the error is re-raised. The credit is never retried.

        Returns:
            (sender balance, receiver balance)
        """
        if from_identity == to_identity:
            raise ValidationError("Cannot transfer to yourself", {"identity": from_identity})
        validate_identity(to_identity)

        metadata = dict(metadata or {})
        sender_balance = await self.debit(
            from_identity, asset, amount, reason, {**metadata, "to": to_identity}
        )

        try:
            receiver_balance = await self.credit(
                to_identity,
                asset,
                amount,
                CREDIT_REASONS.get(reason, reason),
                {**metadata, "from": from_identity},
            )
        except Exception as e:
            logger.error(
                f"Transfer credit failed after debit: {amount} {asset} "
                f"{from_identity} -> {to_identity}: {e}",
                exc_info=True,
            )
            await self.record_reconciliation(
                ReconciliationKind.TRANSFER_CREDIT_FAILED,
                to_identity,
                asset,
                amount,
                {**metadata, "from": from_identity, "reason": reason.value, "error": str(e)},
            )
            raise

        return sender_balance, receiver_balance

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_account(self, identity: str) -> Account | None:
        return await self.store.get_account(identity)

    async def require_account(self, identity: str) -> Account:
        """Raises AccountNotFoundError unless the identity is registered."""
        account = await self.store.get_account(identity)
        if account is None:
            raise AccountNotFoundError(identity)
        return account

    async def register(self, identity: str, hedera_account_id: str | None = None) -> Account:
        """Create the account (idempotent), optionally linking an address."""
        validate_identity(identity)
        if hedera_account_id is not None and not is_valid_hedera_account(hedera_account_id):
            raise InvalidAddressError(hedera_account_id)
        account = await self.store.upsert_account(identity, hedera_account_id)
        logger.info(f"Registered account {identity} (address={account.hedera_account_id})")
        return account

    async def link_address(self, identity: str, hedera_account_id: str) -> Account:
        """Set or replace the linked external address of a registered account."""
        await self.require_account(identity)
        if not is_valid_hedera_account(hedera_account_id):
            raise InvalidAddressError(hedera_account_id)
        return await self.store.upsert_account(identity, hedera_account_id)

    async def deposit_instructions(self, identity: str) -> DepositInstructions:
        """Vault address plus the memo that attributes a deposit to ``identity``."""
        validate_identity(identity)
        if not self.settings.hedera_operator_id:
            raise ValidationError("Vault account is not configured")
        return DepositInstructions(
            vault_account_id=self.settings.hedera_operator_id,
            memo=identity,
            network=self.settings.hedera_network,
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def record_reconciliation(
        self,
        kind: ReconciliationKind,
        identity: str,
        asset: str,
        amount: int,
        details: dict[str, Any] | None = None,
    ) -> ReconciliationRecord | None:
        """Persist a reconciliation record; never raises.

        The caller is already handling a failure, so a failure here is
        logged with the full record instead.
        """
        record = ReconciliationRecord(
            kind=kind, identity=identity, asset=asset, amount=amount, details=details or {}
        )
        try:
            record = await self.store.add_reconciliation(record)
        except Exception:
            logger.critical(
                f"Could not persist reconciliation record {kind.value}: "
                f"identity={identity} asset={asset} amount={amount} details={details}",
                exc_info=True,
            )
            return None
        logger.warning(
            f"Reconciliation needed ({kind.value}) #{record.id}: "
            f"{amount} {asset} for {identity}"
        )
        return record

    async def list_reconciliation(
        self, resolved: bool | None = False, limit: int = 100
    ) -> list[ReconciliationRecord]:
        return await self.store.list_reconciliation(resolved, limit)

    async def resolve_reconciliation(self, record_id: int) -> ReconciliationRecord | None:
        record = await self.store.resolve_reconciliation(record_id)
        if record:
            logger.info(f"Reconciliation record #{record_id} resolved")
        return record
