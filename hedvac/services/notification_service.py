"""Notification Service - Best-effort direct messages to Discord users.

Delivery failures are logged and swallowed; no ledger operation ever depends
on a notification being delivered.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from hedvac.core.config import get_settings
from hedvac.hedera.mirror import MirrorNodeClient
from hedvac.utils.amount import HBAR_DECIMALS, NATIVE_ASSET, format_amount

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Direct-message delivery supplied by the chat layer."""

    @abstractmethod
    async def send_dm(self, identity: str, content: str) -> bool:
        """Send ``content`` to ``identity``; True if delivered."""
        pass

    async def close(self) -> None:
        pass


class LogNotifier(Notifier):
    """Writes notifications to the log; used when no bot token is configured."""

    async def send_dm(self, identity: str, content: str) -> bool:
        logger.info(f"DM to {identity}: {content}")
        return True


class DiscordNotifier(Notifier):
    """Sends DMs through the Discord REST API."""

    BASE_URL = "https://discord.com/api/v10"

    def __init__(
        self,
        bot_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Discord notifier.

        Args:
            bot_token: Discord bot token. If not provided, uses config.
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        settings = get_settings()
        self.bot_token = bot_token or settings.discord_bot_token
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        # identity -> DM channel id
        self._channels: dict[str, str] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={"Authorization": f"Bot {self.bot_token}"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _open_channel(self, client: httpx.AsyncClient, identity: str) -> str:
        channel_id = self._channels.get(identity)
        if channel_id:
            return channel_id
        response = await client.post("/users/@me/channels", json={"recipient_id": identity})
        response.raise_for_status()
        channel_id = response.json()["id"]
        self._channels[identity] = channel_id
        return channel_id

    async def send_dm(self, identity: str, content: str) -> bool:
        if not self.bot_token:
            logger.warning("Discord bot token not configured, skipping notification")
            return False

        try:
            client = await self._get_client()
            channel_id = await self._open_channel(client, identity)
            response = await client.post(
                f"/channels/{channel_id}/messages", json={"content": content}
            )
            response.raise_for_status()
            return True
        except (httpx.HTTPError, KeyError, ValueError) as e:
            # Users may have DMs disabled
            logger.warning(f"Could not send DM to {identity}: {e}")
            return False


def get_notifier() -> Notifier:
    """Discord notifier when a bot token is configured, else the log notifier."""
    if get_settings().discord_bot_token:
        return DiscordNotifier()
    return LogNotifier()


async def notify(notifier: Notifier | None, identity: str, content: str) -> None:
    """Fire-and-forget DM; a failing notifier never fails the caller."""
    if notifier is None:
        return
    try:
        await notifier.send_dm(identity, content)
    except Exception as e:
        logger.warning(f"Notification to {identity} failed: {e}")


# ============ Message Templates ============


async def display_amount(
    asset: str, amount: int, mirror: MirrorNodeClient | None = None
) -> tuple[str, str]:
    """Amount and asset name for humans, e.g. ("1.5", "HBAR")."""
    if asset == NATIVE_ASSET:
        return format_amount(amount, HBAR_DECIMALS), NATIVE_ASSET
    if mirror is None:
        return str(amount), asset
    info = await mirror.get_token_info(asset)
    return format_amount(amount, info.decimals), info.display_name


def format_deposit_message(amount: str, asset_name: str, transaction_id: str) -> str:
    return (
        "💰 **Deposit Received!**\n"
        "Your deposit has been confirmed and credited to your balance.\n"
        f"Amount: {amount} {asset_name}\n"
        f"Transaction ID: `{transaction_id}`"
    )


def format_rain_message(creator_id: str, amount: str, asset_name: str) -> str:
    return f"🌧️ You caught {amount} {asset_name} from a rain by <@{creator_id}>!"


def format_withdrawal_message(
    amount: str, asset_name: str, destination: str, transaction_id: str
) -> str:
    return (
        "📤 **Withdrawal Sent**\n"
        f"Amount: {amount} {asset_name}\n"
        f"To: `{destination}`\n"
        f"Transaction ID: `{transaction_id}`"
    )
