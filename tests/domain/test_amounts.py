from __future__ import annotations

import pytest

from escrowsync.domain.amounts import (
    UNIT,
    format_amount,
    is_valid_address,
    normalize_address,
    parse_amount,
    parse_quantity,
    split_payment,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, "0.0"),
        (UNIT, "1.0"),
        (UNIT // 4, "0.25"),
        (3 * UNIT + 1, "3.000000000000000001"),
    ],
)
def test_format_amount_is_lossless(value: int, expected: str) -> None:
    assert format_amount(value) == expected


def test_format_amount_keeps_values_beyond_64_bits() -> None:
    value = 123_456_789 * UNIT + 987_654_321

    assert format_amount(value) == "123456789.000000000987654321"
    assert parse_amount(format_amount(value)) == value


def test_parse_amount_accepts_whole_and_fractional_values() -> None:
    assert parse_amount("1") == UNIT
    assert parse_amount("1.5") == 15 * 10**17
    assert parse_amount(" 0.02 ") == 2 * 10**16


@pytest.mark.parametrize("text", ["", "abc", "-1", "1.2.3", "0." + "1" * 19])
def test_parse_amount_rejects_invalid_text(text: str) -> None:
    with pytest.raises(ValueError):
        parse_amount(text)


def test_parse_quantity_handles_ints_decimal_and_hex() -> None:
    assert parse_quantity(42) == 42
    assert parse_quantity("42") == 42
    assert parse_quantity("0x2a") == 42
    assert parse_quantity("0X2A") == 42


@pytest.mark.parametrize("value", [True, -1, "nope", "1.5"])
def test_parse_quantity_rejects_non_quantities(value: int | str) -> None:
    with pytest.raises(ValueError):
        parse_quantity(value)


def test_split_payment_takes_fee_in_basis_points() -> None:
    split = split_payment(UNIT, fee_bps=200)

    assert split.platform_fee == 2 * 10**16
    assert split.talent_amount == 98 * 10**16
    assert split.total == UNIT


def test_split_payment_rounds_fee_down_and_conserves_amount() -> None:
    split = split_payment(101, fee_bps=200)

    assert split.platform_fee == 2
    assert split.talent_amount == 99
    assert split.total == 101


def test_split_payment_rejects_negative_amounts() -> None:
    with pytest.raises(ValueError):
        split_payment(-1, fee_bps=200)


def test_normalize_address_lower_cases_valid_addresses() -> None:
    mixed = "0x" + "AbCdEf0123" * 4

    assert normalize_address(f"  {mixed} ") == mixed.lower()
    assert is_valid_address(mixed)
    assert not is_valid_address("0x1234")
    assert not is_valid_address(None)
    with pytest.raises(ValueError):
        normalize_address("not-an-address")
