"""Celery task bodies, run eagerly on their own event loop."""

import asyncio
from datetime import timedelta

import fakeredis
import pytest

from hedvac.models import LootEvent, TransactionReason
from hedvac.storage.redis_store import RedisLedgerStore
from hedvac.utils.helpers import utcnow
from hedvac.workers.tasks import loot_expiry

CREATOR = "100000000000000001"


@pytest.fixture
def make_store(monkeypatch):
    server = fakeredis.FakeServer()

    def factory(backend=None):
        client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        return RedisLedgerStore(client, prefix="test")

    monkeypatch.setattr("hedvac.storage.factory.create_ledger_store", factory)
    return factory


def test_sweep_task_refunds_expired_loot(make_store):
    now = utcnow()

    async def seed():
        store = make_store()
        await store.apply_credit(CREATOR, "HBAR", 40, TransactionReason.DEPOSIT)
        await store.apply_debit(CREATOR, "HBAR", 40, TransactionReason.LOOT)
        await store.create_loot_event(
            LootEvent(
                event_no="LOOT1700000000000AAAAAA",
                creator_id=CREATOR,
                asset="HBAR",
                total_amount=40,
                max_claims=4,
                created_at=now - timedelta(hours=3),
                expires_at=now - timedelta(minutes=1),
            )
        )
        await store.close()

    async def balance():
        store = make_store()
        try:
            return await store.get_balance(CREATOR, "HBAR")
        finally:
            await store.close()

    asyncio.run(seed())

    result = loot_expiry.sweep_expired_loot()

    assert result == {"expired": 1, "refunded_amount": 40, "errors": []}
    assert asyncio.run(balance()) == 40
