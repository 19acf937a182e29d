"""Hedvac Utility Functions.

Common helper functions and utilities used across the application.
"""

from hedvac.utils.amount import (
    HBAR_DECIMALS,
    NATIVE_ASSET,
    format_amount,
    from_smallest_unit,
    to_smallest_unit,
)
from hedvac.utils.helpers import (
    is_valid_hedera_account,
    is_valid_identity,
    utcnow,
)

__all__ = [
    "HBAR_DECIMALS",
    "NATIVE_ASSET",
    "format_amount",
    "from_smallest_unit",
    "to_smallest_unit",
    "is_valid_hedera_account",
    "is_valid_identity",
    "utcnow",
]
