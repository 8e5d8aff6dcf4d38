"""Currency-aware rounding for booking amounts."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# ISO 4217 currencies without a minor unit.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
)

# ISO 4217 currencies with three minor digits.
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})

ZERO = Decimal("0")

Amount = Union[Decimal, int, float, str]


def minor_unit_exponent(currency: str) -> int:
    code = (currency or "").upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Amount, currency: str = "USD") -> Decimal:
    """Round to the currency's minor-unit precision (half up)."""
    quantum = Decimal(1).scaleb(-minor_unit_exponent(currency))
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor_units(value: Amount, currency: str = "USD") -> int:
    """Convert an amount to integer minor units (cents for USD)."""
    rounded = round_money(value, currency)
    return int(rounded.scaleb(minor_unit_exponent(currency)))
