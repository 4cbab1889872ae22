"""Conversions between decimal amounts and integer base units.

All arithmetic goes through ``Decimal`` with enough precision for 256-bit
integers, so no amount ever passes through a float.
"""
from decimal import Decimal, DecimalException, InvalidOperation, localcontext
from typing import Union

from payoova.exceptions import InvalidAmountError

NATIVE_DECIMALS = 18
MAX_BASE_UNITS = 2**256 - 1
_PRECISION = 100
# uint256 has 78 digits; anything with a larger exponent cannot fit whatever the decimals
_MAX_ADJUSTED_EXPONENT = 78


def parse_amount(value: Union[str, int, Decimal]) -> Decimal:
    """Parse a strictly positive, finite decimal amount."""
    if isinstance(value, float):
        raise InvalidAmountError("Amount must be given as a decimal string")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmountError(f"Amount {value!r} is not a decimal number")

    if not amount.is_finite():
        raise InvalidAmountError("Amount must be finite")
    if amount <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    if amount.adjusted() > _MAX_ADJUSTED_EXPONENT:
        raise InvalidAmountError("Amount is too large")
    return amount


def to_base_units(amount: Union[str, Decimal], decimals: int) -> int:
    """Scale a decimal amount to integer base units (e.g. ETH to wei)."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        try:
            scaled = Decimal(amount).scaleb(decimals)
            integral = scaled == scaled.to_integral_value()
        except DecimalException:
            raise InvalidAmountError(f"Amount {amount} is out of range")
        if not integral:
            raise InvalidAmountError(f"Amount has more than {decimals} decimal places")
        units = int(scaled)
    if units > MAX_BASE_UNITS:
        raise InvalidAmountError("Amount exceeds the largest on-chain value")
    return units


def from_base_units(value: int, decimals: int) -> str:
    """Format integer base units as a plain decimal string."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return format_decimal(Decimal(int(value)).scaleb(-decimals))


def format_decimal(value: Decimal) -> str:
    """Render without exponent and without trailing zeros."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text
