"""Core module - configuration and exceptions."""

from hedvac.core.config import Settings, get_settings
from hedvac.core.exceptions import (
    AccountNotFoundError,
    DestinationNotPreparedError,
    DuplicateTransferError,
    ExternalServiceUnavailableError,
    HedvacError,
    InsufficientFundsError,
    InvalidAddressError,
    LootClaimError,
    NoEligibleRecipientsError,
    ValidationError,
)

__all__ = [
    "Settings",
    "get_settings",
    "HedvacError",
    "ValidationError",
    "InsufficientFundsError",
    "InvalidAddressError",
    "DestinationNotPreparedError",
    "AccountNotFoundError",
    "DuplicateTransferError",
    "ExternalServiceUnavailableError",
    "NoEligibleRecipientsError",
    "LootClaimError",
]
