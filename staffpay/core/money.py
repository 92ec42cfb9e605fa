"""
Single rounding rule for every monetary value: round half up to the currency unit.
XOF has no minor unit, so all stored amounts are whole numbers.
"""
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0")
UNIT = Decimal("1")


def money(value) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(UNIT, rounding=ROUND_HALF_UP)


def percent_of(amount, percentage) -> Decimal:
    return money(Decimal(str(amount)) * Decimal(str(percentage)) / Decimal("100"))
