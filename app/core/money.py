"""Rupee <-> paise conversion. Amounts are stored as integer paise."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

PAISE_PER_RUPEE = 100


def to_paise(amount: Decimal | int | float | str) -> int:
    """Round to the nearest paisa, halves away from zero."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a number: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Not a finite number: {amount!r}")
    return int((value * PAISE_PER_RUPEE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_paise(paise: int) -> Decimal:
    return (Decimal(paise) / PAISE_PER_RUPEE).quantize(Decimal("0.01"))


def money_to_float(paise: int) -> float:
    return float(from_paise(paise))
