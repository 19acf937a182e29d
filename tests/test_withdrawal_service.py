"""Withdrawals: send first, debit after, fees and failure handling."""

import asyncio

import pytest

from hedvac.core.exceptions import (
    AccountNotFoundError,
    DestinationNotPreparedError,
    ExternalServiceUnavailableError,
    InsufficientFundsError,
    InvalidAddressError,
)
from hedvac.hedera.base import ExecutionStatus
from hedvac.models import ReconciliationKind, TransactionReason
from hedvac.services.withdrawal_service import WithdrawalService, withdrawal_locks
from tests.fakes import TOKEN, FakeExecutor, FakeMirror, RecordingNotifier

ALICE = "111111111111111111"
DEST = "0.0.4321"
FEE = 15_000_000


async def fund(store, asset: str, amount: int) -> None:
    await store.upsert_account(ALICE)
    await store.apply_credit(ALICE, asset, amount, TransactionReason.DEPOSIT)


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def service(store, executor):
    return WithdrawalService(store, executor, fee=FEE)


async def test_withdraw_all_hbar_leaves_zero(store, executor, service):
    await fund(store, "HBAR", 100_000_000)

    result = await service.withdraw(ALICE, "HBAR", "all", DEST)

    assert executor.sent == [("HBAR", DEST, 85_000_000)]
    assert result.amount == 85_000_000
    assert result.fee == FEE
    assert result.balance_after == 0
    assert result.status == ExecutionStatus.SUCCESS
    assert await store.get_balance(ALICE, "HBAR") == 0

    history = await store.get_history(ALICE)
    assert history[0].amount == -100_000_000
    assert history[0].reason == TransactionReason.WITHDRAW
    assert history[0].details["external_tx_id"] == result.external_tx_id


async def test_withdraw_fixed_amount_charges_fee(store, executor, service):
    await fund(store, "HBAR", 100_000_000)

    result = await service.withdraw(ALICE, "HBAR", 50_000_000, DEST)

    assert executor.sent == [("HBAR", DEST, 50_000_000)]
    assert result.balance_after == 35_000_000


async def test_amount_plus_fee_must_be_covered(store, executor, service):
    await fund(store, "HBAR", 100_000_000)

    with pytest.raises(InsufficientFundsError) as exc_info:
        await service.withdraw(ALICE, "HBAR", 90_000_000, DEST)

    assert "fee" in exc_info.value.message
    assert executor.sent == []
    assert await store.get_balance(ALICE, "HBAR") == 100_000_000


async def test_withdraw_all_below_fee_is_rejected(store, executor, service):
    await fund(store, "HBAR", FEE)

    with pytest.raises(InsufficientFundsError):
        await service.withdraw(ALICE, "HBAR", "all", DEST)
    assert executor.sent == []


async def test_token_withdrawal_debits_token_and_hbar_fee(store, executor, service):
    await fund(store, TOKEN, 500)
    await store.apply_credit(ALICE, "HBAR", 20_000_000, TransactionReason.DEPOSIT)

    result = await service.withdraw(ALICE, TOKEN, "all", DEST)

    assert executor.sent == [(TOKEN, DEST, 500)]
    assert result.balance_after == 0
    assert await store.get_balances(ALICE) == {"HBAR": 5_000_000}
    reasons = [r.reason for r in await store.get_history(ALICE, limit=2)]
    assert reasons == [TransactionReason.WITHDRAW_FEE, TransactionReason.WITHDRAW]


async def test_token_withdrawal_needs_hbar_for_fee(store, executor, service):
    await fund(store, TOKEN, 500)

    with pytest.raises(InsufficientFundsError) as exc_info:
        await service.withdraw(ALICE, TOKEN, 100, DEST)

    assert exc_info.value.asset == "HBAR"
    assert executor.sent == []


async def test_invalid_destination_is_rejected(store, service):
    await fund(store, "HBAR", 100_000_000)
    with pytest.raises(InvalidAddressError):
        await service.withdraw(ALICE, "HBAR", 1, "0xdeadbeef")


async def test_unregistered_identity_is_rejected(service):
    with pytest.raises(AccountNotFoundError):
        await service.withdraw(ALICE, "HBAR", 1, DEST)


async def test_failed_send_debits_nothing(store):
    await fund(store, "HBAR", 100_000_000)
    service = WithdrawalService(
        store, FakeExecutor(error=ExternalServiceUnavailableError("network down")), fee=FEE
    )

    with pytest.raises(ExternalServiceUnavailableError):
        await service.withdraw(ALICE, "HBAR", 10_000_000, DEST)

    assert await store.get_balance(ALICE, "HBAR") == 100_000_000
    assert len(await store.get_history(ALICE)) == 1


async def test_unassociated_token_debits_nothing(store):
    await fund(store, TOKEN, 500)
    await store.apply_credit(ALICE, "HBAR", FEE, TransactionReason.DEPOSIT)
    service = WithdrawalService(
        store, FakeExecutor(error=DestinationNotPreparedError(DEST, TOKEN)), fee=FEE
    )

    with pytest.raises(DestinationNotPreparedError) as exc_info:
        await service.withdraw(ALICE, TOKEN, 500, DEST)

    assert exc_info.value.details["required_action"] == "associate_token"
    assert await store.get_balances(ALICE) == {"HBAR": FEE, TOKEN: 500}


async def test_indeterminate_send_is_debited_as_success(store):
    await fund(store, "HBAR", 100_000_000)
    executor = FakeExecutor(status=ExecutionStatus.INDETERMINATE)
    service = WithdrawalService(store, executor, fee=FEE)

    result = await service.withdraw(ALICE, "HBAR", 10_000_000, DEST)

    assert result.status == ExecutionStatus.INDETERMINATE
    assert await store.get_balance(ALICE, "HBAR") == 75_000_000
    history = await store.get_history(ALICE)
    assert history[0].details["execution_status"] == "indeterminate"


async def test_debit_failure_after_send_is_recorded(store, executor, service, monkeypatch):
    await fund(store, "HBAR", 100_000_000)

    async def broken_debit(*args, **kwargs):
        raise RuntimeError("store went away")

    monkeypatch.setattr(store, "apply_debit", broken_debit)

    with pytest.raises(RuntimeError):
        await service.withdraw(ALICE, "HBAR", 10_000_000, DEST)

    assert executor.sent == [("HBAR", DEST, 10_000_000)]
    records = await store.list_reconciliation()
    assert len(records) == 1
    assert records[0].kind == ReconciliationKind.WITHDRAWAL_DEBIT_FAILED
    assert records[0].amount == 10_000_000 + FEE
    assert records[0].details["external_tx_id"] == "0.0.5000@1700000000.000000001"


async def test_concurrent_withdrawals_are_serialized(store, executor, service):
    await fund(store, "HBAR", 100_000_000)

    results = await asyncio.gather(
        service.withdraw(ALICE, "HBAR", 60_000_000, DEST),
        service.withdraw(ALICE, "HBAR", 60_000_000, DEST),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, InsufficientFundsError)]
    assert len(failures) == 1
    assert len(executor.sent) == 1
    assert await store.get_balance(ALICE, "HBAR") == 100_000_000 - 60_000_000 - FEE
    # Locks are dropped once released
    assert len(withdrawal_locks) == 0


async def test_separate_services_share_identity_lock(store, executor):
    await fund(store, "HBAR", 100_000_000)
    first = WithdrawalService(store, executor, fee=FEE)
    second = WithdrawalService(store, executor, fee=FEE)

    results = await asyncio.gather(
        first.withdraw(ALICE, "HBAR", 60_000_000, DEST),
        second.withdraw(ALICE, "HBAR", 60_000_000, DEST),
        return_exceptions=True,
    )

    assert sum(isinstance(r, InsufficientFundsError) for r in results) == 1
    assert len(executor.sent) == 1
    assert len(withdrawal_locks) == 0


async def test_withdrawal_notification_shows_token_symbol(store):
    await fund(store, TOKEN, 250)
    await store.apply_credit(ALICE, "HBAR", FEE, TransactionReason.DEPOSIT)
    notifier = RecordingNotifier()
    service = WithdrawalService(store, FakeExecutor(), notifier=notifier, mirror=FakeMirror(), fee=FEE)

    await service.withdraw(ALICE, TOKEN, 250, DEST)

    assert len(notifier.messages) == 1
    assert "2.5 TT" in notifier.messages[0][1]
