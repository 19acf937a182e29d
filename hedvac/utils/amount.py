"""Amount conversion between display units and smallest integer units.

Balances are stored as integers (tinybars for HBAR, the token's smallest
unit otherwise). Decimal is only used at the presentation boundary.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from hedvac.core.exceptions import ValidationError

NATIVE_ASSET = "HBAR"
HBAR_DECIMALS = 8


def to_smallest_unit(amount: Decimal | str | int | float, decimals: int) -> int:
    """Convert a display amount (e.g. ``1.5`` HBAR) to integer smallest units.

    Digits beyond ``decimals`` are truncated, never rounded up.

    Raises:
        ValidationError: If the amount is not a positive number
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Amount must be positive, got {amount!r}")

    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal("1"), rounding=ROUND_DOWN)
    if scaled <= 0:
        raise ValidationError(f"Amount {amount} is below the smallest unit")
    return int(scaled)


def from_smallest_unit(amount: int, decimals: int) -> Decimal:
    """Convert integer smallest units to a Decimal display amount."""
    return Decimal(amount) / (Decimal(10) ** decimals)


def format_amount(amount: int, decimals: int) -> str:
    """Human-readable amount without trailing zeros.

    Example: format_amount(150_000_000, 8) -> "1.5"
    """
    value = from_smallest_unit(amount, decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
