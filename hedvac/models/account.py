"""Hedvac Tip Bot - Account models.

One Account per Discord identity, with one AccountBalance row per asset.
Accounts are created lazily on registration or on the first credit, and are
never deleted.
"""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from hedvac.utils.helpers import utcnow


class Account(SQLModel, table=True):
    """Custodial account keyed by Discord identity.

    Attributes:
        identity: Discord user id (immutable)
        hedera_account_id: Linked external account (0.0.N), set on registration
        created_at: First registration or first credit
        updated_at: Last balance or address change
    """

    __tablename__ = "accounts"

    identity: str = Field(primary_key=True, max_length=32)
    hedera_account_id: str | None = Field(default=None, max_length=32)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AccountBalance(SQLModel, table=True):
    """Balance of one asset for one account, in the asset's smallest unit.

    Only the ledger store writes this table; the check constraint backs up
    the non-negative invariant enforced by conditional debits.
    """

    __tablename__ = "account_balances"
    __table_args__ = (
        sa.UniqueConstraint("identity", "asset", name="uq_account_balances_identity_asset"),
        sa.CheckConstraint("balance >= 0", name="ck_account_balances_non_negative"),
    )

    id: int | None = Field(default=None, primary_key=True)
    identity: str = Field(foreign_key="accounts.identity", index=True, max_length=32)
    asset: str = Field(max_length=32, description="HBAR or token id (0.0.N)")
    balance: int = Field(
        default=0,
        sa_column=sa.Column(sa.BigInteger, nullable=False, default=0),
    )
    updated_at: datetime = Field(default_factory=utcnow)
