"""Unit tests for amount parsing and base-unit conversion."""
from decimal import Decimal

import pytest

from payoova.exceptions import InvalidAmountError
from payoova.services.amounts import format_decimal, from_base_units, parse_amount, to_base_units


@pytest.mark.parametrize("value", ["0", "-1", "abc", "", "NaN", "Infinity", "1e999999", "1e79"])
def test_parse_amount_rejects(value):
    """Test non-positive, non-numeric and non-finite amounts are refused."""
    with pytest.raises(InvalidAmountError):
        parse_amount(value)


def test_parse_amount_rejects_float():
    """Test floats are refused so no amount loses precision."""
    with pytest.raises(InvalidAmountError):
        parse_amount(0.1)


def test_to_base_units_exact():
    """Test decimal amounts scale exactly."""
    assert to_base_units("1", 18) == 10**18
    assert to_base_units("0.000000000000000001", 18) == 1
    assert to_base_units(Decimal("12.5"), 6) == 12_500_000
    # Larger than a 64-bit float can represent exactly
    assert to_base_units("123456789.123456789123456789", 18) == 123456789123456789123456789


def test_to_base_units_rejects_excess_precision():
    """Test amounts finer than the asset's decimals are refused."""
    with pytest.raises(InvalidAmountError):
        to_base_units("0.0000001", 6)


def test_to_base_units_rejects_values_beyond_uint256():
    """Test amounts that parse but cannot be represented on chain are refused."""
    with pytest.raises(InvalidAmountError, match="largest"):
        to_base_units(parse_amount("2e77"), 18)
    with pytest.raises(InvalidAmountError, match="out of range"):
        to_base_units(Decimal("1e999999"), 18)


def test_from_base_units_formatting():
    """Test base units render without exponent or trailing zeros."""
    assert from_base_units(0, 18) == "0"
    assert from_base_units(10**18, 18) == "1"
    assert from_base_units(1, 18) == "0.000000000000000001"
    assert from_base_units(1_500_000, 6) == "1.5"
    assert from_base_units(2**256 - 1, 18).startswith("115792089237316195423570985008687907853269984665640564039457")


def test_format_decimal():
    assert format_decimal(Decimal("1.2300")) == "1.23"
    assert format_decimal(Decimal("1E+3")) == "1000"
    assert format_decimal(Decimal("-0.0")) == "0"
