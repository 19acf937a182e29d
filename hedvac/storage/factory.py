"""Ledger store factory.

The backend is chosen once at startup from settings; the rest of the
application only sees the LedgerStore interface.
"""

import logging
from functools import lru_cache

from hedvac.core.config import get_settings
from hedvac.storage.base import LedgerStore

logger = logging.getLogger(__name__)

BACKENDS = ("sql", "redis")


def create_ledger_store(backend: str | None = None) -> LedgerStore:
    """Build a new store for ``backend`` (defaults to the configured one).

    Raises:
        ValueError: If the backend is not supported
    """
    settings = get_settings()
    backend = (backend or settings.ledger_backend).lower()

    if backend == "sql":
        from hedvac.db.engine import get_engine, get_session_factory
        from hedvac.storage.sql import SQLLedgerStore

        return SQLLedgerStore(get_engine(), get_session_factory())
    elif backend == "redis":
        import redis.asyncio as redis

        from hedvac.storage.redis_store import RedisLedgerStore

        client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return RedisLedgerStore(client, prefix=settings.redis_key_prefix)
    else:
        raise ValueError(f"Unsupported ledger backend: {backend}")


@lru_cache(maxsize=1)
def get_ledger_store() -> LedgerStore:
    """Process-wide ledger store."""
    store = create_ledger_store()
    logger.info(f"Using {store.backend} ledger store")
    return store


async def close_ledger_store() -> None:
    """Close the cached store and forget it."""
    if get_ledger_store.cache_info().currsize:
        await get_ledger_store().close()
    get_ledger_store.cache_clear()
