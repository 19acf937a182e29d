"""Hedera mirror node REST client.

Read-only access to the vault's transaction feed and token metadata.
Docs: https://docs.hedera.com/hedera/sdks-and-apis/rest-api
"""

import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from hedvac.core.config import get_settings
from hedvac.core.exceptions import ExternalServiceUnavailableError
from hedvac.utils.amount import NATIVE_ASSET

logger = logging.getLogger(__name__)

SUCCESS_RESULT = "SUCCESS"
CRYPTO_TRANSFER = "CRYPTOTRANSFER"


def decode_memo(memo_base64: str | None) -> str | None:
    """Decode a base64 memo to stripped UTF-8 text; None if undecodable."""
    if not memo_base64:
        return ""
    try:
        return base64.b64decode(memo_base64, validate=True).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


@dataclass
class TransferLeg:
    """One signed movement of an asset to or from an account."""

    account: str
    asset: str  # NATIVE_ASSET or token id
    amount: int


@dataclass
class MirrorTransaction:
    """A transaction as reported by the mirror node."""

    transaction_id: str
    consensus_timestamp: str
    name: str
    result: str
    memo: str | None
    legs: list[TransferLeg] = field(default_factory=list)

    @property
    def is_successful_transfer(self) -> bool:
        return self.result == SUCCESS_RESULT and self.name == CRYPTO_TRANSFER

    def received_by(self, account_id: str) -> list[tuple[str, int]]:
        """Positive amounts into ``account_id`` summed per asset, in leg order."""
        totals: dict[str, int] = {}
        for leg in self.legs:
            if leg.account == account_id and leg.amount > 0:
                totals[leg.asset] = totals.get(leg.asset, 0) + leg.amount
        return list(totals.items())

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MirrorTransaction":
        """Build from one item of ``/api/v1/transactions``.

        Raises:
            KeyError, ValueError, TypeError: The item is malformed
        """
        legs = [
            TransferLeg(account=t["account"], asset=NATIVE_ASSET, amount=int(t["amount"]))
            for t in data.get("transfers") or []
        ]
        legs.extend(
            TransferLeg(account=t["account"], asset=t["token_id"], amount=int(t["amount"]))
            for t in data.get("token_transfers") or []
        )
        return cls(
            transaction_id=data["transaction_id"],
            consensus_timestamp=str(data["consensus_timestamp"]),
            name=data.get("name", ""),
            result=data.get("result", ""),
            memo=decode_memo(data.get("memo_base64")),
            legs=legs,
        )


@dataclass
class TokenInfo:
    """Display metadata for a token."""

    token_id: str
    name: str
    symbol: str
    decimals: int

    @property
    def display_name(self) -> str:
        return self.symbol or self.name or self.token_id


class MirrorNodeClient:
    """Async client for the mirror node REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        token_cache_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.resolved_mirror_node_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.token_cache_seconds = (
            token_cache_seconds
            if token_cache_seconds is not None
            else settings.token_info_cache_seconds
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token_cache: dict[str, tuple[float, TokenInfo]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(
        self, url: str, params: dict[str, Any] | None = None, missing_ok: bool = False
    ) -> dict[str, Any] | None:
        client = await self._get_client()
        try:
            response = await client.get(url, params=params)
            if missing_ok and response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceUnavailableError(
                f"Mirror node request failed: {e}", {"url": url}
            ) from e

    # ============ Transactions ============

    async def list_vault_transactions(
        self,
        account_id: str,
        after: str | None = None,
        limit: int = 25,
        max_pages: int = 1,
    ) -> list[MirrorTransaction]:
        """Transactions touching ``account_id`` after a consensus timestamp.

        Results are in ascending consensus order. Follows ``links.next`` up to
        ``max_pages`` pages. Malformed items are logged and dropped.

        Raises:
            ExternalServiceUnavailableError: Any page could not be fetched
        """
        params: dict[str, Any] | None = {
            "account.id": account_id,
            "order": "asc",
            "limit": limit,
        }
        if after:
            params["timestamp"] = f"gt:{after}"

        url = "/api/v1/transactions"
        transactions: list[MirrorTransaction] = []
        for _ in range(max_pages):
            data = await self._get_json(url, params)
            for item in data.get("transactions") or []:
                try:
                    transactions.append(MirrorTransaction.from_api(item))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(
                        f"Skipping malformed mirror transaction "
                        f"{item.get('transaction_id', '?')}: {e}"
                    )

            next_link = (data.get("links") or {}).get("next")
            if not next_link:
                break
            # The next link carries its own query string
            url, params = next_link, None

        return transactions

    async def get_transaction(self, transaction_id: str) -> MirrorTransaction | None:
        """One transaction by id; None if the mirror node does not know it.

        Child records (scheduled or nested) share the id; the top-level one,
        nonce 0, is returned.

        Raises:
            ExternalServiceUnavailableError: The request failed
        """
        data = await self._get_json(f"/api/v1/transactions/{transaction_id}", missing_ok=True)
        for item in (data or {}).get("transactions") or []:
            if item.get("nonce", 0) != 0:
                continue
            try:
                return MirrorTransaction.from_api(item)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Malformed mirror transaction {transaction_id}: {e}")
                return None
        return None

    # ============ Tokens ============

    async def get_token_info(self, token_id: str) -> TokenInfo:
        """Token name, symbol and decimals, cached per token.

        Never raises; falls back to the bare token id with 0 decimals.
        """
        cached = self._token_cache.get(token_id)
        if cached and time.monotonic() - cached[0] < self.token_cache_seconds:
            return cached[1]

        try:
            data = await self._get_json(f"/api/v1/tokens/{token_id}")
        except ExternalServiceUnavailableError as e:
            logger.warning(f"Token info unavailable for {token_id}: {e}")
            return TokenInfo(token_id=token_id, name=token_id, symbol="", decimals=0)

        info = TokenInfo(
            token_id=token_id,
            name=data.get("name") or token_id,
            symbol=data.get("symbol") or "",
            decimals=int(data.get("decimals") or 0),
        )
        self._token_cache[token_id] = (time.monotonic(), info)
        return info
