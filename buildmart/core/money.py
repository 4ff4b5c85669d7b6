from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
UNIT_PRICE_STEP = Decimal("0.0001")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize to centavos, rounding half up. Floats go through ``str`` so 1.005 stays 1.005."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_unit_price(value: Decimal | int | float | str) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(UNIT_PRICE_STEP, rounding=ROUND_HALF_UP)
