"""Small shared helpers."""

import re
from datetime import UTC, datetime
from decimal import Decimal

HEDERA_ACCOUNT_PATTERN = re.compile(r"0\.0\.\d+", re.ASCII)
DISCORD_ID_PATTERN = re.compile(r"\d+", re.ASCII)


def utcnow() -> datetime:
    """Naive UTC now; all timestamps are stored as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_epoch(dt: datetime) -> float:
    """Naive UTC datetime to epoch seconds."""
    return dt.replace(tzinfo=UTC).timestamp()


def is_valid_hedera_account(address: str | None) -> bool:
    """True for shard 0 / realm 0 account ids such as ``0.0.12345``."""
    return bool(address) and HEDERA_ACCOUNT_PATTERN.fullmatch(address) is not None


def is_valid_identity(identity: str | None) -> bool:
    """True for a numeric Discord snowflake."""
    return bool(identity) and DISCORD_ID_PATTERN.fullmatch(identity) is not None


# Consensus timestamps are "seconds.nanoseconds" strings. Compare them as
# Decimal, never as float or as plain strings.


def parse_consensus_timestamp(value: str) -> Decimal:
    return Decimal(value)


def consensus_timestamp_from_datetime(dt: datetime) -> str:
    """Naive UTC datetime to a ``seconds.nanos`` string."""
    seconds = int(to_epoch(dt.replace(microsecond=0)))
    return f"{seconds}.{dt.microsecond * 1000:09d}"


def shift_consensus_timestamp(value: str, seconds: int) -> str:
    """Move a ``seconds.nanos`` timestamp by whole seconds (negative = back)."""
    shifted = parse_consensus_timestamp(value) + seconds
    return f"{shifted:.9f}"

