"""Operator API endpoints."""

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from hedvac.api.deps import get_store
from hedvac.main import create_app
from hedvac.models import LootEvent, ReconciliationKind, ReconciliationRecord, TransactionReason
from hedvac.services.loot_service import LootService
from hedvac.utils.helpers import utcnow
from tests.fakes import VAULT

ALICE = "111111111111111111"
BOB = "222222222222222222"


@pytest_asyncio.fixture
async def client(store):
    app = create_app(with_lifespan=False)
    app.dependency_overrides[get_store] = lambda: store
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_account_lookup(store, client):
    await store.upsert_account(ALICE, "0.0.4321")

    response = await client.get(f"/api/ledger/accounts/{ALICE}")

    assert response.status_code == 200
    assert response.json()["hedera_account_id"] == "0.0.4321"


async def test_unknown_account_is_404(client):
    response = await client.get(f"/api/ledger/accounts/{BOB}")

    assert response.status_code == 404
    assert response.json()["error"] == "AccountNotFoundError"


async def test_balances_and_history(store, client):
    await store.apply_credit(ALICE, "HBAR", 700, TransactionReason.DEPOSIT)
    await store.apply_debit(ALICE, "HBAR", 200, TransactionReason.SEND)

    balances = await client.get(f"/api/ledger/accounts/{ALICE}/balances")
    history = await client.get(f"/api/ledger/accounts/{ALICE}/history", params={"limit": 10})

    assert balances.json() == {"identity": ALICE, "balances": {"HBAR": 500}}
    assert [r["amount"] for r in history.json()] == [-200, 700]
    assert history.json()[0]["reason"] == "send"


async def test_deposit_instructions(client):
    response = await client.get(f"/api/ledger/accounts/{ALICE}/deposit-instructions")

    assert response.json() == {"vault_account_id": VAULT, "memo": ALICE, "network": "testnet"}


async def test_invalid_identity_is_400(client):
    response = await client.get("/api/ledger/accounts/alice/deposit-instructions")
    assert response.status_code == 400


async def test_reconciliation_list_and_resolve(store, client):
    record = await store.add_reconciliation(
        ReconciliationRecord(
            kind=ReconciliationKind.LOOT_CREDIT_FAILED, identity=BOB, asset="HBAR", amount=33
        )
    )

    listed = await client.get("/api/ledger/reconciliation")
    assert [r["id"] for r in listed.json()] == [record.id]

    resolved = await client.post(f"/api/ledger/reconciliation/{record.id}/resolve")
    assert resolved.status_code == 200
    assert resolved.json()["resolved"] is True

    assert (await client.get("/api/ledger/reconciliation")).json() == []
    missing = await client.post("/api/ledger/reconciliation/9999/resolve")
    assert missing.status_code == 404


async def test_cursor_read_and_override(client):
    assert (await client.get("/api/ledger/deposits/cursor")).json() == {"cursor": None}

    response = await client.put("/api/ledger/deposits/cursor", json={"cursor": "1700000000.5"})
    assert response.json() == {"cursor": "1700000000.5"}
    assert (await client.get("/api/ledger/deposits/cursor")).json() == {"cursor": "1700000000.5"}

    bad = await client.put("/api/ledger/deposits/cursor", json={"cursor": "yesterday"})
    assert bad.status_code == 422


async def test_loot_endpoints(store, client):
    await store.apply_credit(ALICE, "HBAR", 90, TransactionReason.DEPOSIT)
    loot = LootService(store)
    event = await loot.create_loot(ALICE, "HBAR", 90, max_claims=3)
    await loot.claim(event.event_no, BOB)

    active = await client.get("/api/promotions/loot/active")
    assert [e["event_no"] for e in active.json()] == [event.event_no]
    assert active.json()[0]["amount_per_claim"] == 30

    detail = await client.get(f"/api/promotions/loot/{event.event_no}")
    assert detail.json()["event"]["claim_count"] == 1
    assert [c["user_id"] for c in detail.json()["claims"]] == [BOB]

    assert (await client.get("/api/promotions/loot/LOOT0")).status_code == 404


async def test_sweep_endpoint(store, client):
    now = utcnow()
    await store.apply_credit(ALICE, "HBAR", 50, TransactionReason.DEPOSIT)
    await store.apply_debit(ALICE, "HBAR", 50, TransactionReason.LOOT)
    await store.create_loot_event(
        LootEvent(
            event_no="LOOT1700000000000ABCDEF",
            creator_id=ALICE,
            asset="HBAR",
            total_amount=50,
            max_claims=5,
            created_at=now - timedelta(hours=2),
            expires_at=now - timedelta(hours=1),
        )
    )

    response = await client.post("/api/promotions/loot/sweep")

    assert response.json() == {"expired": 1, "refunded_amount": 50, "errors": []}
    assert await store.get_balance(ALICE, "HBAR") == 50


async def test_rain_history_endpoint(client):
    response = await client.get("/api/promotions/rain")
    assert response.status_code == 200
    assert response.json() == []


async def test_operator_key_is_enforced(settings, monkeypatch, client):
    monkeypatch.setattr(settings, "operator_api_key", "s3cret")

    assert (await client.get("/api/ledger/deposits/cursor")).status_code == 401
    wrong = await client.get("/api/ledger/deposits/cursor", headers={"X-API-Key": "nope"})
    assert wrong.status_code == 401
    ok = await client.get("/api/ledger/deposits/cursor", headers={"X-API-Key": "s3cret"})
    assert ok.status_code == 200


@pytest.mark.parametrize("path", ["/api/ledger/reconciliation", "/api/promotions/rain"])
async def test_limit_is_bounded(client, path):
    response = await client.get(path, params={"limit": 0})
    assert response.status_code == 422
