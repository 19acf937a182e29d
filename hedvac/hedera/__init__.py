"""Hedera network access: mirror node queries and vault transfers."""

import logging
from functools import lru_cache

from hedvac.hedera.base import ExecutionStatus, TransferExecutor, TransferReceipt
from hedvac.hedera.mirror import MirrorNodeClient, MirrorTransaction, TokenInfo, TransferLeg

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_transfer_executor() -> TransferExecutor:
    """Vault transfer executor built from settings.

    The SDK is imported here so the ledger core runs without it.
    """
    from hedvac.hedera.sdk import HieroTransferExecutor

    executor = HieroTransferExecutor()
    logger.info(f"Transfer executor ready for vault {executor.vault_account_id}")
    return executor


@lru_cache(maxsize=1)
def get_mirror_client() -> MirrorNodeClient:
    """Process-wide mirror node client."""
    return MirrorNodeClient()


__all__ = [
    "ExecutionStatus",
    "TransferExecutor",
    "TransferReceipt",
    "MirrorNodeClient",
    "MirrorTransaction",
    "TokenInfo",
    "TransferLeg",
    "get_transfer_executor",
    "get_mirror_client",
]
