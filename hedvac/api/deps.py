"""Common FastAPI dependencies for API endpoints."""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from hedvac.core.config import get_settings
from hedvac.services.ledger_service import LedgerService
from hedvac.services.loot_service import LootService
from hedvac.storage.base import LedgerStore
from hedvac.storage.factory import get_ledger_store


def get_store() -> LedgerStore:
    """Process-wide ledger store (overridden in tests)."""
    return get_ledger_store()


StoreDep = Annotated[LedgerStore, Depends(get_store)]


async def verify_operator(
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Require the operator API key when one is configured."""
    expected = get_settings().operator_api_key
    if not expected:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key")


def get_ledger_service(store: StoreDep) -> LedgerService:
    return LedgerService(store)


def get_loot_service(store: StoreDep) -> LootService:
    return LootService(store)


LedgerServiceDep = Annotated[LedgerService, Depends(get_ledger_service)]
LootServiceDep = Annotated[LootService, Depends(get_loot_service)]
