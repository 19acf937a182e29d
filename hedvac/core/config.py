"""Hedvac Tip Bot - Core Configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIRROR_NODE_URLS = {
    "mainnet": "https://mainnet-public.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
    "previewnet": "https://previewnet.mirrornode.hedera.com",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Hedvac Tip Bot"
    debug: bool = False

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./hedvac.db",
        description="SQLAlchemy async URL (sqlite+aiosqlite or mysql+aiomysql)",
    )
    ledger_backend: Literal["sql", "redis"] = Field(
        default="sql", description="Ledger store implementation, chosen once at startup"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the redis ledger backend and the task queue",
    )
    redis_key_prefix: str = Field(default="hedvac", description="Namespace for redis keys")

    # Hedera
    hedera_network: Literal["mainnet", "testnet", "previewnet"] = Field(
        default="mainnet", description="Hedera network"
    )
    hedera_operator_id: str = Field(default="", description="Vault account id (0.0.N)")
    hedera_operator_key: str = Field(default="", description="Vault account private key")
    mirror_node_url: str = Field(
        default="", description="Mirror node base URL, derived from the network when empty"
    )
    http_timeout_seconds: float = Field(
        default=8.0, description="Timeout for every external HTTP call"
    )
    transfer_timeout_seconds: float = Field(
        default=9.0, description="Bound on submitting a transfer and waiting for its receipt"
    )

    # Deposit poller
    deposit_poll_interval_seconds: int = Field(default=30)
    deposit_poll_start_delay_seconds: int = Field(default=10)
    deposit_page_limit: int = Field(default=25, ge=1, le=100)
    deposit_max_pages: int = Field(default=4, ge=1)
    deposit_rescan_overlap_seconds: int = Field(
        default=10, ge=0, description="Re-read window behind the resume cursor"
    )
    deposit_initial_lookback_minutes: int = Field(
        default=60, description="Where scanning starts when no cursor is stored"
    )
    deposit_max_concurrency: int = Field(default=2, ge=1)
    deposit_require_registration: bool = Field(
        default=True, description="Skip deposits whose memo names an unregistered identity"
    )

    # Withdrawals
    withdrawal_fee_tinybars: int = Field(default=15_000_000, description="0.15 HBAR")

    # Promotions
    loot_default_duration_hours: int = Field(default=24)
    loot_sweep_interval_seconds: int = Field(default=60)
    rain_default_window_minutes: int = Field(default=60)
    rain_default_max_recipients: int = Field(default=10)

    # Token metadata cache
    token_info_cache_seconds: int = Field(default=3600)

    # Discord (direct-message notifications)
    discord_bot_token: str = Field(default="", description="Bot token for DM notifications")

    # Operator API
    operator_api_key: str = Field(
        default="", description="Required in X-API-Key for operator endpoints; open when empty"
    )

    @property
    def resolved_mirror_node_url(self) -> str:
        """Mirror node URL, falling back to the public node for the network."""
        return (self.mirror_node_url or MIRROR_NODE_URLS[self.hedera_network]).rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
