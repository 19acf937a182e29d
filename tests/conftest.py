"""Shared fixtures: both ledger backends and isolated settings."""

import fakeredis
import pytest
import pytest_asyncio

from hedvac.core.config import get_settings
from hedvac.db.engine import build_engine
from hedvac.storage.redis_store import RedisLedgerStore
from hedvac.storage.sql import SQLLedgerStore
from tests.fakes import VAULT, RecordingNotifier


@pytest.fixture(autouse=True)
def settings(monkeypatch):
    """Deterministic settings, isolated from any local .env."""
    monkeypatch.setenv("HEDERA_OPERATOR_ID", VAULT)
    monkeypatch.setenv("HEDERA_NETWORK", "testnet")
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "")
    monkeypatch.setenv("OPERATOR_API_KEY", "")
    monkeypatch.setenv("LEDGER_BACKEND", "sql")
    monkeypatch.setenv("WITHDRAWAL_FEE_TINYBARS", "15000000")
    monkeypatch.setenv("DEPOSIT_RESCAN_OVERLAP_SECONDS", "10")
    monkeypatch.setenv("DEPOSIT_REQUIRE_REGISTRATION", "true")
    monkeypatch.setenv("DEPOSIT_MAX_CONCURRENCY", "2")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest_asyncio.fixture(params=["sql", "redis"])
async def store(request, tmp_path):
    """A fresh, initialized ledger store for each backend."""
    if request.param == "sql":
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        ledger_store = SQLLedgerStore(engine)
    else:
        client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
        ledger_store = RedisLedgerStore(client, prefix="test")
    await ledger_store.initialize()
    yield ledger_store
    await ledger_store.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()
