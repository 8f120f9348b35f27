"""Value helpers for ledger amounts and addresses.

Amounts travel through the system as integers in the ledger's smallest unit and are
persisted as exact decimal strings. Display strings use 18 fractional digits, with
trailing zeros trimmed down to a single digit (``1.0``, ``0.25``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

DECIMALS: Final[int] = 18
UNIT: Final[int] = 10**DECIMALS
BPS_DENOMINATOR: Final[int] = 10_000

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_AMOUNT_RE = re.compile(r"^(?P<whole>\d+)(?:\.(?P<fraction>\d*))?$")


def is_valid_address(value: object) -> bool:
    return isinstance(value, str) and _ADDRESS_RE.match(value) is not None


def normalize_address(value: str) -> str:
    """Return the lower-case form of ``value`` or raise ``ValueError``."""

    candidate = value.strip()
    if not is_valid_address(candidate):
        raise ValueError(f"Invalid address: {value!r}")
    return candidate.lower()


def format_amount(value: int, *, decimals: int = DECIMALS) -> str:
    """Format a smallest-unit integer as a lossless decimal display string."""

    if value < 0:
        return "-" + format_amount(-value, decimals=decimals)
    whole, fraction = divmod(value, 10**decimals)
    fraction_text = str(fraction).rjust(decimals, "0").rstrip("0") or "0"
    return f"{whole}.{fraction_text}"


def parse_amount(text: str, *, decimals: int = DECIMALS) -> int:
    """Parse a display string (``"1.5"``) into a smallest-unit integer."""

    match = _AMOUNT_RE.match(text.strip())
    if match is None:
        raise ValueError(f"Invalid amount: {text!r}")
    fraction = match.group("fraction") or ""
    if len(fraction) > decimals:
        raise ValueError(f"Amount {text!r} has more than {decimals} decimal places")
    return int(match.group("whole")) * 10**decimals + int(fraction.ljust(decimals, "0") or "0")


def parse_quantity(value: int | str) -> int:
    """Parse a ledger quantity given as int, decimal string or ``0x`` hex string."""

    if isinstance(value, bool):
        raise ValueError("Booleans are not quantities")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Negative quantity: {value}")
        return value
    text = value.strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    if not text.isdigit():
        raise ValueError(f"Invalid quantity: {value!r}")
    return int(text)


@dataclass(frozen=True, slots=True)
class PaymentSplit:
    talent_amount: int
    platform_fee: int

    @property
    def total(self) -> int:
        return self.talent_amount + self.platform_fee


def split_payment(amount: int, *, fee_bps: int) -> PaymentSplit:
    """Split a milestone payout into the talent share and the platform fee.

    The fee is rounded down; the talent receives the remainder, so the two parts
    always add up to ``amount`` exactly.
    """

    if amount < 0:
        raise ValueError("Amount must be non-negative")
    fee = amount * fee_bps // BPS_DENOMINATOR
    return PaymentSplit(talent_amount=amount - fee, platform_fee=fee)


__all__ = [
    "DECIMALS",
    "UNIT",
    "PaymentSplit",
    "format_amount",
    "is_valid_address",
    "normalize_address",
    "parse_amount",
    "parse_quantity",
    "split_payment",
]
