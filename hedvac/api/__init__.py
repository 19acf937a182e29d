"""Hedvac operator API routers."""

from hedvac.api.ledger import router as ledger_router
from hedvac.api.promotions import router as promotions_router

__all__ = [
    "ledger_router",
    "promotions_router",
]
