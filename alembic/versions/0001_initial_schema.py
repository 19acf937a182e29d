"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Initial database schema for the Hedvac custodial ledger.
"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TRANSACTION_REASONS = (
    "DEPOSIT",
    "RECEIVE",
    "RAIN_RECEIVE",
    "RAIN_REFUND",
    "LOOT_CLAIM",
    "LOOT_REFUND",
    "WITHDRAW",
    "WITHDRAW_FEE",
    "SEND",
    "RAIN",
    "LOOT",
    "ADJUSTMENT",
)
PROMOTION_STATUSES = ("ACTIVE", "EXPIRED", "COMPLETED")
LOOT_TYPES = ("NORMAL", "MYSTERY")
RECONCILIATION_KINDS = (
    "TRANSFER_CREDIT_FAILED",
    "RAIN_CREDIT_FAILED",
    "LOOT_CREDIT_FAILED",
    "REFUND_CREDIT_FAILED",
    "WITHDRAWAL_DEBIT_FAILED",
    "REFUND_PENDING",
    "DEPOSIT_APPLY_FAILED",
)


def upgrade() -> None:
    """Create initial database schema."""
    # Accounts table
    op.create_table(
        "accounts",
        sa.Column("identity", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("hedera_account_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("identity"),
    )

    # Account balances table
    op.create_table(
        "account_balances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("asset", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("balance", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_account_balances_non_negative"),
        sa.ForeignKeyConstraint(["identity"], ["accounts.identity"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identity", "asset", name="uq_account_balances_identity_asset"),
    )
    op.create_index(
        op.f("ix_account_balances_identity"), "account_balances", ["identity"], unique=False
    )

    # Ledger transactions table
    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tx_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("identity", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("asset", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column(
            "reason", sa.Enum(*TRANSACTION_REASONS, name="transactionreason"), nullable=False
        ),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_id"),
    )
    op.create_index(
        op.f("ix_ledger_transactions_identity"), "ledger_transactions", ["identity"], unique=False
    )
    op.create_index(
        op.f("ix_ledger_transactions_reason"), "ledger_transactions", ["reason"], unique=False
    )
    op.create_index(
        "ix_ledger_transactions_identity_created_at",
        "ledger_transactions",
        ["identity", "created_at"],
        unique=False,
    )

    # Processed transfers table
    op.create_table(
        "processed_transfers",
        sa.Column("transfer_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column(
            "consensus_timestamp", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True
        ),
        sa.Column("identity", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("transfer_id"),
    )

    # Bot settings table
    op.create_table(
        "bot_settings",
        sa.Column("key", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("value", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )

    # Reconciliation records table
    op.create_table(
        "reconciliation_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "kind", sa.Enum(*RECONCILIATION_KINDS, name="reconciliationkind"), nullable=False
        ),
        sa.Column("identity", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("asset", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_reconciliation_records_kind"), "reconciliation_records", ["kind"], unique=False
    )
    op.create_index(
        op.f("ix_reconciliation_records_identity"),
        "reconciliation_records",
        ["identity"],
        unique=False,
    )
    op.create_index(
        op.f("ix_reconciliation_records_resolved"),
        "reconciliation_records",
        ["resolved"],
        unique=False,
    )

    # Rain events table
    op.create_table(
        "rain_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_no", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("creator_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("asset", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("distributed_amount", sa.BigInteger(), nullable=False),
        sa.Column("recipient_count", sa.Integer(), nullable=False),
        sa.Column("refunded_amount", sa.BigInteger(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("min_role", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True),
        sa.Column("message", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column(
            "status", sa.Enum(*PROMOTION_STATUSES, name="promotionstatus"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_rain_events_event_no"), "rain_events", ["event_no"], unique=True)
    op.create_index(op.f("ix_rain_events_creator_id"), "rain_events", ["creator_id"], unique=False)
    op.create_index(op.f("ix_rain_events_status"), "rain_events", ["status"], unique=False)
    op.create_index(op.f("ix_rain_events_created_at"), "rain_events", ["created_at"], unique=False)

    # Loot events table
    op.create_table(
        "loot_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_no", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("creator_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("asset", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("claimed_amount", sa.BigInteger(), nullable=False),
        sa.Column("claim_count", sa.Integer(), nullable=False),
        sa.Column("max_claims", sa.Integer(), nullable=False),
        sa.Column("loot_type", sa.Enum(*LOOT_TYPES, name="loottype"), nullable=False),
        sa.Column("message", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column("min_role", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=True),
        sa.Column("channel_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("refunded_amount", sa.BigInteger(), nullable=False),
        sa.Column(
            "status", sa.Enum(*PROMOTION_STATUSES, name="promotionstatus"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_loot_events_event_no"), "loot_events", ["event_no"], unique=True)
    op.create_index(op.f("ix_loot_events_creator_id"), "loot_events", ["creator_id"], unique=False)
    op.create_index(
        "ix_loot_events_status_expires_at", "loot_events", ["status", "expires_at"], unique=False
    )

    # Loot claims table
    op.create_table(
        "loot_claims",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_no", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["event_no"], ["loot_events.event_no"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_no", "user_id", name="uq_loot_claims_event_user"),
    )
    op.create_index(op.f("ix_loot_claims_event_no"), "loot_claims", ["event_no"], unique=False)


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("loot_claims")
    op.drop_table("loot_events")
    op.drop_table("rain_events")
    op.drop_table("reconciliation_records")
    op.drop_table("bot_settings")
    op.drop_table("processed_transfers")
    op.drop_table("ledger_transactions")
    op.drop_table("account_balances")
    op.drop_table("accounts")
