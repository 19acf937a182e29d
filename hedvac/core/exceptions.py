"""Hedvac Tip Bot - Custom exceptions.

Every error carries a ``details`` dict so the chat layer can tell the user
which precondition failed.
"""

from typing import Any


class HedvacError(Exception):
    """Base exception for all Hedvac errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(HedvacError):
    """Input validation failed."""

    pass


class InsufficientFundsError(HedvacError):
    """Balance is lower than the amount required."""

    def __init__(
        self,
        asset: str,
        required: int,
        available: int,
        message: str | None = None,
    ) -> None:
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            message or f"Insufficient {asset} balance: need {required}, have {available}",
            {"asset": asset, "required": required, "available": available},
        )


class InvalidAddressError(HedvacError):
    """Destination is not a syntactically valid Hedera account id."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(
            f"Invalid Hedera address format: {address!r} (expected 0.0.N)",
            {"address": address},
        )


class DestinationNotPreparedError(HedvacError):
    """Destination account has not associated the token being sent."""

    def __init__(self, address: str, token_id: str) -> None:
        self.address = address
        self.token_id = token_id
        super().__init__(
            f"Account {address} has not associated token {token_id}. "
            "Associate the token in your wallet, then retry the withdrawal.",
            {"address": address, "token_id": token_id, "required_action": "associate_token"},
        )


class AccountNotFoundError(HedvacError):
    """Operation requires a registered account."""

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(
            f"Account {identity} is not registered",
            {"identity": identity},
        )


class DuplicateTransferError(HedvacError):
    """External transfer was already applied to the ledger."""

    def __init__(self, transfer_id: str) -> None:
        self.transfer_id = transfer_id
        super().__init__(f"Transfer {transfer_id} already processed", {"transfer_id": transfer_id})


class ExternalServiceUnavailableError(HedvacError):
    """Mirror node or network is unreachable; safe to retry later."""

    pass


class NoEligibleRecipientsError(HedvacError):
    """No active identities are available for a rain."""

    pass


class LootClaimError(HedvacError):
    """A loot claim was rejected."""

    NOT_FOUND = "not_found"
    NOT_ACTIVE = "not_active"
    EXPIRED = "expired"
    FULL = "full"
    ALREADY_CLAIMED = "already_claimed"

    MESSAGES = {
        NOT_FOUND: "Loot not found",
        NOT_ACTIVE: "This loot is no longer active",
        EXPIRED: "This loot has expired",
        FULL: "All loot has been claimed",
        ALREADY_CLAIMED: "You already claimed this loot",
    }

    def __init__(self, event_no: str, reason: str) -> None:
        self.event_no = event_no
        self.reason = reason
        super().__init__(
            self.MESSAGES.get(reason, "Loot claim rejected"),
            {"event_no": event_no, "reason": reason},
        )
