"""Base transfer executor interface.

Defines the abstract interface for moving funds out of the custodial vault.
Implementations sign with the vault key and submit to the Hedera network.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from hedvac.utils.helpers import is_valid_hedera_account


class ExecutionStatus(str, Enum):
    """Outcome of a submitted transfer.

    INDETERMINATE means the network accepted the transaction but no receipt
    could be obtained. Callers treat it as success, since a retry could pay
    out twice.
    """

    SUCCESS = "success"
    INDETERMINATE = "indeterminate"


@dataclass
class TransferReceipt:
    """Result of a vault transfer."""

    transaction_id: str
    status: ExecutionStatus = ExecutionStatus.SUCCESS
    error: str | None = None

    @property
    def is_indeterminate(self) -> bool:
        return self.status == ExecutionStatus.INDETERMINATE


class TransferExecutor(ABC):
    """Abstract base class for vault transfer execution.

    Errors raised before the network accepted the transaction mean nothing
    was sent:
        ExternalServiceUnavailableError: network unreachable or rejected
        DestinationNotPreparedError: destination has not associated the token
    """

    @property
    @abstractmethod
    def vault_account_id(self) -> str:
        """Return the custodial account id (0.0.N)."""
        pass

    def validate_address(self, address: str) -> bool:
        """Check that an address is a syntactically valid account id."""
        return is_valid_hedera_account(address)

    @abstractmethod
    async def transfer_hbar(self, to_address: str, amount_tinybars: int) -> TransferReceipt:
        """Send HBAR from the vault.

        Args:
            to_address: Destination account id (0.0.N)
            amount_tinybars: Amount in tinybars

        Returns:
            TransferReceipt with the external transaction id
        """
        pass

    @abstractmethod
    async def transfer_token(
        self, token_id: str, to_address: str, amount: int
    ) -> TransferReceipt:
        """Send a fungible token from the vault.

        Args:
            token_id: Token id (0.0.N)
            to_address: Destination account id (0.0.N)
            amount: Amount in the token's smallest unit

        Returns:
            TransferReceipt with the external transaction id
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
