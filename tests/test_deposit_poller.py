"""Deposit poller: attribution, exactly-once crediting and cursor handling."""

import pytest

from hedvac.models import ReconciliationKind, TransactionReason
from hedvac.workers.deposit_poller import DepositPoller, TransferOutcome
from tests.fakes import TOKEN, VAULT, FakeMirror, RecordingNotifier, deposit, make_transaction

ALICE = "111111111111111111"
BOB = "222222222222222222"


@pytest.fixture
def mirror():
    return FakeMirror()


@pytest.fixture(autouse=True)
def long_lookback(settings, monkeypatch):
    # Fixture timestamps are from 2023; reach back far enough to see them
    monkeypatch.setattr(settings, "deposit_initial_lookback_minutes", 10 * 365 * 24 * 60)


@pytest.fixture
def poller(store, mirror):
    return DepositPoller(store, mirror, vault_account_id=VAULT)


async def test_deposit_with_identity_memo_is_credited(store, mirror, poller):
    await store.upsert_account(ALICE)
    mirror.transactions = [deposit("0.0.1234@1700000000.000000001", "1700000001.000000001", ALICE, 100_000_000)]

    stats = await poller.poll_once()

    assert stats.applied == 1
    assert await store.get_balance(ALICE, "HBAR") == 100_000_000
    history = await store.get_history(ALICE)
    assert len(history) == 1
    assert history[0].amount == 100_000_000
    assert history[0].reason == TransactionReason.DEPOSIT
    assert history[0].details["transfer_id"] == "0.0.1234@1700000000.000000001"


async def test_redelivered_transfer_is_credited_once(store, mirror, poller):
    await store.upsert_account(ALICE)
    tx = deposit("0.0.1234@1700000000.000000002", "1700000002.000000000", ALICE, 5_000)
    mirror.transactions = [tx]

    await poller.poll_once()
    # Rolling the cursor back re-delivers the same transfer
    await store.set_cursor("1700000000.000000000")
    stats = await poller.poll_once()

    assert stats.applied == 0
    assert stats.duplicates == 1
    assert await store.get_balance(ALICE, "HBAR") == 5_000
    assert await poller.process_transaction(tx) == TransferOutcome.DUPLICATE


async def test_token_and_hbar_legs_are_credited_together(store, mirror, poller):
    await store.upsert_account(ALICE)
    mirror.transactions = [
        make_transaction(
            "0.0.1234@1700000000.000000003",
            "1700000003.000000000",
            ALICE,
            [
                ("0.0.1234", "HBAR", -300),
                (VAULT, "HBAR", 300),
                ("0.0.1234", TOKEN, -42),
                (VAULT, TOKEN, 42),
                ("0.0.98", "HBAR", 5),
            ],
        )
    ]

    await poller.poll_once()

    assert await store.get_balances(ALICE) == {"HBAR": 300, TOKEN: 42}


@pytest.mark.parametrize("memo", [None, "", "not-an-id", "12 34"])
async def test_unattributable_deposit_is_skipped(store, mirror, poller, memo):
    mirror.transactions = [deposit("0.0.1234@1700000000.000000004", "1700000004.000000000", memo, 10)]

    stats = await poller.poll_once()

    assert stats.skipped == 1
    assert stats.applied == 0
    # Skipped transfers still let the cursor move past them
    assert stats.cursor == "1700000004.000000000"


async def test_deposit_for_unregistered_identity_is_skipped(store, mirror, poller):
    mirror.transactions = [deposit("0.0.1234@1700000000.000000005", "1700000005.000000000", BOB, 10)]

    stats = await poller.poll_once()

    assert stats.skipped == 1
    assert await store.get_balance(BOB, "HBAR") == 0
    assert await store.get_account(BOB) is None


async def test_outgoing_and_failed_transactions_are_ignored(store, mirror, poller):
    await store.upsert_account(ALICE)
    mirror.transactions = [
        make_transaction(
            "0.0.5000@1700000000.000000006",
            "1700000006.000000000",
            ALICE,
            [(VAULT, "HBAR", -100), ("0.0.1234", "HBAR", 100)],
        ),
        make_transaction(
            "0.0.1234@1700000000.000000007",
            "1700000007.000000000",
            ALICE,
            [("0.0.1234", "HBAR", -100), (VAULT, "HBAR", 100)],
            result="INSUFFICIENT_PAYER_BALANCE",
        ),
        make_transaction(
            "0.0.1234@1700000000.000000008",
            "1700000008.000000000",
            ALICE,
            [],
            name="TOKENASSOCIATE",
        ),
    ]

    stats = await poller.poll_once()

    assert stats.skipped == 3
    assert await store.get_balance(ALICE, "HBAR") == 0


def flaky_apply(store, monkeypatch, *broken_ids):
    """Make apply_deposit fail for the given transfers; returns the original."""
    apply_deposit = store.apply_deposit

    async def apply(identity, transfer_id, consensus_timestamp, legs):
        if transfer_id in broken_ids:
            raise ConnectionError("database unavailable")
        return await apply_deposit(identity, transfer_id, consensus_timestamp, legs)

    monkeypatch.setattr(store, "apply_deposit", apply)
    return apply_deposit


async def test_failing_transfer_is_parked_and_retried_by_id(store, mirror, poller, monkeypatch):
    await store.upsert_account(ALICE)
    first = deposit("0.0.1234@1700000010.000000000", "1700000010.000000000", ALICE, 1)
    broken = deposit("0.0.1234@1700000011.000000000", "1700000011.000000000", ALICE, 2)
    last = deposit("0.0.1234@1700000012.000000000", "1700000012.000000000", ALICE, 4)
    mirror.transactions = [first, broken, last]
    apply_deposit = flaky_apply(store, monkeypatch, broken.transaction_id)

    stats = await poller.poll_once()

    assert stats.applied == 2
    assert stats.failed == 1
    assert stats.deferred == 1
    # The failure does not hold the cursor back
    assert await store.get_cursor() == last.consensus_timestamp
    assert await store.get_balance(ALICE, "HBAR") == 5
    [record] = await store.list_reconciliation()
    assert record.kind == ReconciliationKind.DEPOSIT_APPLY_FAILED
    assert record.identity == ALICE
    assert record.amount == 2
    assert record.details["transfer_id"] == broken.transaction_id

    monkeypatch.setattr(store, "apply_deposit", apply_deposit)
    stats = await poller.poll_once()

    assert mirror.lookups == [broken.transaction_id]
    assert stats.recovered == 1
    assert stats.duplicates == 3
    assert await store.get_balance(ALICE, "HBAR") == 7
    assert await store.list_reconciliation() == []


async def test_persistent_failure_does_not_block_later_deposits(
    store, mirror, poller, settings, monkeypatch
):
    monkeypatch.setattr(settings, "deposit_page_limit", 2)
    monkeypatch.setattr(settings, "deposit_max_pages", 1)
    await store.upsert_account(ALICE)
    await store.set_cursor("1700001000.000000000")
    poison = deposit("poison", "1700001001.000000000", ALICE, 1)
    mirror.transactions = [
        poison,
        deposit("a", "1700001002.000000000", ALICE, 10),
        deposit("b", "1700001003.000000000", ALICE, 20),
        deposit("c", "1700001004.000000000", ALICE, 40),
    ]
    flaky_apply(store, monkeypatch, poison.transaction_id)

    for _ in range(5):
        await poller.poll_once()

    assert await store.get_balance(ALICE, "HBAR") == 70
    assert await store.get_cursor() == "1700001004.000000000"
    # Still parked, once
    records = await store.list_reconciliation()
    assert [r.details["transfer_id"] for r in records] == ["poison"]


async def test_cursor_held_when_failure_cannot_be_parked(store, mirror, poller, monkeypatch):
    await store.upsert_account(ALICE)
    first = deposit("0.0.1234@1700000010.000000000", "1700000010.000000000", ALICE, 1)
    broken = deposit("0.0.1234@1700000011.000000000", "1700000011.000000000", ALICE, 2)
    last = deposit("0.0.1234@1700000012.000000000", "1700000012.000000000", ALICE, 4)
    mirror.transactions = [first, broken, last]
    apply_deposit = flaky_apply(store, monkeypatch, broken.transaction_id)
    add_reconciliation = store.add_reconciliation

    async def store_down(record):
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(store, "add_reconciliation", store_down)
    stats = await poller.poll_once()

    assert stats.failed == 1
    assert stats.deferred == 0
    assert await store.get_cursor() == first.consensus_timestamp

    # Next cycle re-fetches from the cursor; the later one is a duplicate
    monkeypatch.setattr(store, "apply_deposit", apply_deposit)
    monkeypatch.setattr(store, "add_reconciliation", add_reconciliation)
    stats = await poller.poll_once()

    assert stats.applied == 1
    assert stats.duplicates == 2
    assert await store.get_cursor() == last.consensus_timestamp
    assert await store.get_balance(ALICE, "HBAR") == 7


async def test_parked_transfer_waits_out_mirror_outage(store, mirror, poller, monkeypatch):
    await store.upsert_account(ALICE)
    broken = deposit("0.0.1234@1700000011.000000000", "1700000011.000000000", ALICE, 2)
    mirror.transactions = [broken]
    apply_deposit = flaky_apply(store, monkeypatch, broken.transaction_id)
    await poller.poll_once()

    monkeypatch.setattr(store, "apply_deposit", apply_deposit)
    mirror.fail = True
    stats = await poller.poll_once()

    assert stats.recovered == 0
    assert len(await store.list_reconciliation()) == 1

    mirror.fail = False
    stats = await poller.poll_once()

    assert stats.recovered == 1
    assert await store.get_balance(ALICE, "HBAR") == 2


async def test_scan_starts_behind_cursor_by_overlap(store, mirror, poller):
    await store.set_cursor("1700000100.000000000")

    await poller.poll_once()

    assert mirror.calls == ["1700000090.000000000"]


async def test_cursor_never_moves_backwards(store):
    assert await store.advance_cursor("1700000200.000000000") is True
    assert await store.advance_cursor("1700000100.999999999") is False
    assert await store.advance_cursor("1700000200.000000000") is False
    assert await store.get_cursor() == "1700000200.000000000"
    # Compared numerically, not as strings
    assert await store.advance_cursor("1700000200.1") is True


async def test_mirror_outage_leaves_cursor_untouched(store, mirror, poller):
    await store.set_cursor("1700000100.000000000")
    mirror.fail = True

    stats = await poller.poll_once()

    assert stats.errors
    assert await store.get_cursor() == "1700000100.000000000"


async def test_safe_poll_skips_when_cycle_in_flight(poller):
    poller._polling = True
    assert await poller.safe_poll() is None


async def test_safe_poll_never_raises(store, mirror, poller, monkeypatch):
    async def broken_cursor():
        raise RuntimeError("boom")

    monkeypatch.setattr(store, "get_cursor", broken_cursor)

    assert await poller.safe_poll() is None
    assert poller.is_polling is False


async def test_depositor_is_notified(store, mirror):
    await store.upsert_account(ALICE)
    notifier = RecordingNotifier()
    mirror.transactions = [deposit("0.0.1234@1700000000.000000020", "1700000020.000000000", ALICE, 150_000_000)]
    poller = DepositPoller(store, mirror, vault_account_id=VAULT, notifier=notifier)

    await poller.poll_once()

    assert len(notifier.messages) == 1
    identity, content = notifier.messages[0]
    assert identity == ALICE
    assert "1.5 HBAR" in content


async def test_failing_notifier_does_not_undo_deposit(store, mirror):
    await store.upsert_account(ALICE)
    mirror.transactions = [deposit("0.0.1234@1700000000.000000021", "1700000021.000000000", ALICE, 10)]
    poller = DepositPoller(store, mirror, vault_account_id=VAULT, notifier=RecordingNotifier(fail=True))

    stats = await poller.poll_once()

    assert stats.applied == 1
    assert await store.get_balance(ALICE, "HBAR") == 10


async def test_start_and_stop(store, mirror, settings, monkeypatch):
    monkeypatch.setattr(settings, "deposit_poll_start_delay_seconds", 0)
    monkeypatch.setattr(settings, "deposit_poll_interval_seconds", 60)
    poller = DepositPoller(store, mirror, vault_account_id=VAULT)

    poller.start()
    await poller._sleep(0.05)
    await poller.stop()

    assert mirror.calls
