"""Withdrawal Service - Move funds from the custodial ledger to an external account.

Withdrawal flow:
1. Validate destination and resolve "all"
2. Pre-check balances (asset amount, plus the HBAR fee)
3. Send from the vault through the TransferExecutor
4. Debit the ledger only after a confirmed or assumed-successful send

A failed send never touches the ledger. A debit that fails after a send
leaves a reconciliation record, since the funds are already gone.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Literal

from hedvac.core.config import get_settings
from hedvac.core.exceptions import InsufficientFundsError, InvalidAddressError
from hedvac.hedera.base import ExecutionStatus, TransferExecutor, TransferReceipt
from hedvac.hedera.mirror import MirrorNodeClient
from hedvac.models import ReconciliationKind, TransactionReason
from hedvac.services.ledger_service import LedgerService, validate_amount, validate_asset
from hedvac.services.notification_service import (
    Notifier,
    display_amount,
    format_withdrawal_message,
    notify,
)
from hedvac.storage.base import LedgerStore
from hedvac.utils.amount import HBAR_DECIMALS, NATIVE_ASSET, format_amount

logger = logging.getLogger(__name__)

WITHDRAW_ALL = "all"


class IdentityLocks:
    """Per-identity asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._users[identity] = self._users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[identity] -= 1
            if not self._users[identity]:
                del self._users[identity]
                del self._locks[identity]


# Process-wide: one withdrawal per identity at a time across all services
withdrawal_locks = IdentityLocks()


@dataclass
class WithdrawalResult:
    """Outcome of a completed withdrawal."""

    asset: str
    amount: int
    fee: int
    destination: str
    external_tx_id: str
    status: ExecutionStatus
    balance_after: int


class WithdrawalService:
    """Service for withdrawal business logic."""

    def __init__(
        self,
        store: LedgerStore,
        executor: TransferExecutor,
        notifier: Notifier | None = None,
        mirror: MirrorNodeClient | None = None,
        fee: int | None = None,
    ):
        self.ledger = LedgerService(store)
        self.executor = executor
        self.notifier = notifier
        self.mirror = mirror
        self.fee = get_settings().withdrawal_fee_tinybars if fee is None else fee

    async def withdraw(
        self,
        identity: str,
        asset: str,
        amount: int | Literal["all"],
        destination: str,
    ) -> WithdrawalResult:
        """Withdraw ``amount`` (or everything) of ``asset`` to ``destination``.

        Raises:
            InvalidAddressError: Destination is not 0.0.N
            AccountNotFoundError: Identity never registered
            InsufficientFundsError: Balance or HBAR fee not covered
            DestinationNotPreparedError: Token not associated on the destination
            ExternalServiceUnavailableError: Send failed; nothing was debited
        """
        validate_asset(asset)
        if not self.executor.validate_address(destination):
            raise InvalidAddressError(destination)
        await self.ledger.require_account(identity)

        async with withdrawal_locks.hold(identity):
            return await self._withdraw(identity, asset, amount, destination)

    async def _resolve_amount(self, identity: str, asset: str, amount: int | str) -> int:
        """Turn "all" into a concrete amount and check every balance involved."""
        native = asset == NATIVE_ASSET
        balance = await self.ledger.get_balance(identity, asset)

        if amount == WITHDRAW_ALL:
            amount = balance - self.fee if native else balance
            if amount <= 0:
                raise InsufficientFundsError(
                    asset,
                    required=(self.fee if native else 0) + 1,
                    available=balance,
                    message=(
                        f"Nothing to withdraw: {asset} balance is {balance}"
                        + (f", fee is {self.fee}" if native else "")
                    ),
                )
        else:
            validate_amount(amount)

        if native:
            required = amount + self.fee
            if balance < required:
                raise InsufficientFundsError(
                    NATIVE_ASSET,
                    required,
                    balance,
                    message=(
                        f"Insufficient HBAR: need {format_amount(required, HBAR_DECIMALS)} "
                        f"(including {format_amount(self.fee, HBAR_DECIMALS)} fee), "
                        f"have {format_amount(balance, HBAR_DECIMALS)}"
                    ),
                )
            return amount

        if balance < amount:
            raise InsufficientFundsError(asset, amount, balance)
        hbar_balance = await self.ledger.get_balance(identity, NATIVE_ASSET)
        if hbar_balance < self.fee:
            raise InsufficientFundsError(
                NATIVE_ASSET,
                self.fee,
                hbar_balance,
                message=(
                    f"Insufficient HBAR for withdrawal fee. Need "
                    f"{format_amount(self.fee, HBAR_DECIMALS)} HBAR, but only have "
                    f"{format_amount(hbar_balance, HBAR_DECIMALS)} HBAR."
                ),
            )
        return amount

    async def _withdraw(
        self, identity: str, asset: str, amount: int | str, destination: str
    ) -> WithdrawalResult:
        amount = await self._resolve_amount(identity, asset, amount)
        native = asset == NATIVE_ASSET

        if native:
            receipt = await self.executor.transfer_hbar(destination, amount)
        else:
            receipt = await self.executor.transfer_token(asset, destination, amount)

        if receipt.is_indeterminate:
            logger.warning(
                f"Withdrawal {receipt.transaction_id} for {identity} is indeterminate "
                f"({receipt.error}); debiting as if confirmed"
            )

        balance_after = await self._debit_after_send(identity, asset, amount, destination, receipt)
        logger.info(
            f"Withdrawal {receipt.transaction_id}: {amount} {asset} from {identity} "
            f"to {destination} (fee {self.fee}, {receipt.status.value})"
        )

        shown, asset_name = await display_amount(asset, amount, self.mirror)
        await notify(
            self.notifier,
            identity,
            format_withdrawal_message(shown, asset_name, destination, receipt.transaction_id),
        )

        return WithdrawalResult(
            asset=asset,
            amount=amount,
            fee=self.fee,
            destination=destination,
            external_tx_id=receipt.transaction_id,
            status=receipt.status,
            balance_after=balance_after,
        )

    async def _debit_after_send(
        self,
        identity: str,
        asset: str,
        amount: int,
        destination: str,
        receipt: TransferReceipt,
    ) -> int:
        """Debit amount and fee; record what could not be debited."""
        metadata: dict[str, Any] = {
            "destination": destination,
            "external_tx_id": receipt.transaction_id,
            "execution_status": receipt.status.value,
            "fee": self.fee,
        }
        # (asset, amount, reason) still to debit, in order
        pending = (
            [(NATIVE_ASSET, amount + self.fee, TransactionReason.WITHDRAW)]
            if asset == NATIVE_ASSET
            else [
                (asset, amount, TransactionReason.WITHDRAW),
                (NATIVE_ASSET, self.fee, TransactionReason.WITHDRAW_FEE),
            ]
        )
        if self.fee == 0 and asset != NATIVE_ASSET:
            pending.pop()

        balance_after = 0
        for index, (debit_asset, debit_amount, reason) in enumerate(pending):
            try:
                new_balance = await self.ledger.debit(
                    identity, debit_asset, debit_amount, reason, metadata
                )
            except Exception as e:
                logger.error(
                    f"Debit failed after withdrawal {receipt.transaction_id} was sent: {e}",
                    exc_info=True,
                )
                for missed_asset, missed_amount, missed_reason in pending[index:]:
                    await self.ledger.record_reconciliation(
                        ReconciliationKind.WITHDRAWAL_DEBIT_FAILED,
                        identity,
                        missed_asset,
                        missed_amount,
                        {**metadata, "reason": missed_reason.value, "error": str(e)},
                    )
                raise
            if debit_asset == asset:
                balance_after = new_balance
        return balance_after
