"""Transfer executor on the Hiero (Hedera) Python SDK.

The SDK is synchronous; each step runs in the default thread pool via
``loop.run_in_executor`` and is bounded by ``transfer_timeout_seconds``.

A transfer is submitted first and its receipt fetched second. Until a node
has accepted the transaction nothing has been sent, so those failures are
plain errors. Once it is accepted only the receipt can be missing.

Failure classification:
    precheck rejected, max attempts, other submit error -> ExternalServiceUnavailableError
    TOKEN_NOT_ASSOCIATED_TO_ACCOUNT                      -> DestinationNotPreparedError
    non-SUCCESS receipt                                  -> ExternalServiceUnavailableError
    submit timed out (call may still land)               -> ExecutionStatus.INDETERMINATE
    accepted, receipt lost or timed out                  -> ExecutionStatus.INDETERMINATE
"""

import asyncio
import functools
import logging

from hiero_sdk_python import (
    AccountId,
    Client,
    Network,
    PrivateKey,
    ResponseCode,
    TokenId,
    TransferTransaction,
)
from hiero_sdk_python.exceptions import MaxAttemptsError, PrecheckError

from hedvac.core.config import get_settings
from hedvac.core.exceptions import (
    DestinationNotPreparedError,
    ExternalServiceUnavailableError,
    InvalidAddressError,
)
from hedvac.hedera.base import ExecutionStatus, TransferExecutor, TransferReceipt

logger = logging.getLogger(__name__)

TOKEN_NOT_ASSOCIATED = "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT"


def status_name(error: Exception) -> str | None:
    """Response code name carried by an SDK error, if any."""
    status = getattr(error, "status", None)
    if status is None:
        return None
    try:
        return ResponseCode(status).name
    except ValueError:
        return str(status)


class HieroTransferExecutor(TransferExecutor):
    """Signs vault transfers with the operator key and submits them."""

    def __init__(
        self,
        operator_id: str | None = None,
        operator_key: str | None = None,
        network: str | None = None,
        timeout: float | None = None,
        client: Client | None = None,
    ):
        settings = get_settings()
        self._operator_id_str = operator_id or settings.hedera_operator_id
        if not self._operator_id_str:
            raise ValueError("HEDERA_OPERATOR_ID is not configured")
        self.operator_id = AccountId.from_string(self._operator_id_str)
        self.timeout = timeout or settings.transfer_timeout_seconds

        key = operator_key or settings.hedera_operator_key
        self.operator_key = PrivateKey.from_string(key) if key else None
        if client is None:
            if self.operator_key is None:
                raise ValueError("HEDERA_OPERATOR_KEY is not configured")
            client = Client(Network(network=network or settings.hedera_network))
            client.set_operator(self.operator_id, self.operator_key)
        self.client = client

    @property
    def vault_account_id(self) -> str:
        return self._operator_id_str

    async def close(self) -> None:
        self.client.close()

    # ============ Transfers ============

    async def transfer_hbar(self, to_address: str, amount_tinybars: int) -> TransferReceipt:
        destination = self._parse_destination(to_address)
        transaction = (
            TransferTransaction()
            .add_hbar_transfer(self.operator_id, -amount_tinybars)
            .add_hbar_transfer(destination, amount_tinybars)
        )
        logger.info(f"Sending {amount_tinybars} tinybars to {to_address}")
        return await self._execute(transaction, to_address, token_id=None)

    async def transfer_token(
        self, token_id: str, to_address: str, amount: int
    ) -> TransferReceipt:
        destination = self._parse_destination(to_address)
        token = TokenId.from_string(token_id)
        transaction = (
            TransferTransaction()
            .add_token_transfer(token, self.operator_id, -amount)
            .add_token_transfer(token, destination, amount)
        )
        logger.info(f"Sending {amount} of token {token_id} to {to_address}")
        return await self._execute(transaction, to_address, token_id=token_id)

    # ============ Internals ============

    def _parse_destination(self, address: str) -> AccountId:
        if not self.validate_address(address):
            raise InvalidAddressError(address)
        return AccountId.from_string(address)

    async def _execute(
        self, transaction: TransferTransaction, to_address: str, token_id: str | None
    ) -> TransferReceipt:
        try:
            transaction.freeze_with(self.client)
            if self.operator_key is not None:
                transaction.sign(self.operator_key)
        except Exception as e:
            raise ExternalServiceUnavailableError(f"Could not prepare transfer: {e}") from e

        transaction_id = str(transaction.transaction_id)
        loop = asyncio.get_running_loop()

        # Step 1: submit. Nothing has left the vault until a node accepts it.
        submit = functools.partial(transaction.execute, self.client, wait_for_receipt=False)
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(None, submit), timeout=self.timeout
            )
        except TimeoutError:
            # The worker thread keeps going and may still get it accepted
            return self._indeterminate(transaction_id, "submission timed out")
        except (PrecheckError, MaxAttemptsError) as e:
            self._raise_for_status(status_name(e) or str(e), to_address, token_id)
            raise ExternalServiceUnavailableError(
                f"Transfer not submitted: {e}", {"transaction_id": transaction_id}
            ) from e
        except Exception as e:
            raise ExternalServiceUnavailableError(
                f"Transfer not submitted: {e}", {"transaction_id": transaction_id}
            ) from e

        # Step 2: receipt. The network has the transfer now.
        try:
            receipt = await asyncio.wait_for(
                loop.run_in_executor(None, response.get_receipt, self.client),
                timeout=self.timeout,
            )
        except TimeoutError:
            return self._indeterminate(transaction_id, "receipt timed out")
        except Exception as e:
            status = status_name(e)
            if status is None or status == ResponseCode.SUCCESS.name:
                return self._indeterminate(transaction_id, str(e) or type(e).__name__)
            # Reached consensus and failed: nothing moved
            self._raise_for_status(status, to_address, token_id)
            raise ExternalServiceUnavailableError(
                f"Transfer failed with status {status}",
                {"transaction_id": transaction_id, "status": status},
            ) from e

        status = ResponseCode(receipt.status).name
        if receipt.status != ResponseCode.SUCCESS:
            self._raise_for_status(status, to_address, token_id)
            raise ExternalServiceUnavailableError(
                f"Transfer failed with status {status}",
                {"transaction_id": transaction_id, "status": status},
            )

        logger.info(f"Transfer {transaction_id} confirmed")
        return TransferReceipt(transaction_id=transaction_id, status=ExecutionStatus.SUCCESS)

    @staticmethod
    def _indeterminate(transaction_id: str, error: str) -> TransferReceipt:
        logger.warning(
            f"Transfer {transaction_id} may have been submitted but has no receipt, "
            f"assuming success: {error}"
        )
        return TransferReceipt(
            transaction_id=transaction_id, status=ExecutionStatus.INDETERMINATE, error=error
        )

    @staticmethod
    def _raise_for_status(status: str, to_address: str, token_id: str | None) -> None:
        if TOKEN_NOT_ASSOCIATED in status and token_id:
            raise DestinationNotPreparedError(to_address, token_id)
