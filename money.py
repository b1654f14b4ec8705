from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from errors import InputValidationError

CENTS = Decimal("100")


def parse_amount(value: Union[int, Decimal], *, field: str = "amount") -> int:
    """Convert a validated amount into integer cents without going through float."""
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
        raise InputValidationError("Invalid amount", field=field)
    amount = Decimal(value)
    if not amount.is_finite():
        raise InputValidationError("Invalid amount", field=field)
    cents = int((amount * CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise InputValidationError("Amount must be positive", field=field)
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / CENTS).quantize(Decimal("0.01"))


def percent_of(part: int, whole: int) -> int:
    """Whole-number percentage of ``part`` in ``whole``, rounded half-up."""
    if whole <= 0:
        return 0
    ratio = Decimal(part) * 100 / Decimal(whole)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
