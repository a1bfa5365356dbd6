"""Touch-tone (DTMF) digit parsing.

Every parser is total: it returns either the typed value or an
``Invalid`` describing why the digits were rejected.  Nothing here raises
on bad caller input; a rejected value sends the caller back to the same
prompt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

_DIGITS = re.compile(r"^[0-9]+$")

CARD_MIN_DIGITS = 13
CARD_MAX_DIGITS = 19
AMOUNT_MAX_DIGITS = 10


@dataclass(frozen=True)
class Invalid:
    """A rejected DTMF entry."""

    field: str
    reason: str


AmountResult = Union[int, Invalid]
DigitsResult = Union[str, Invalid]


def _clean(digits: str | None) -> str:
    # Gather strips the finish key, but a caller pressing '#' twice or a
    # replayed request can still deliver it.
    return (digits or "").strip().rstrip("#")


def parse_amount_cents(digits: str | None, balance_cents: int) -> AmountResult:
    """Digits are cents: ``"2500"`` is $25.00. Must be >0 and <= balance."""
    value = _clean(digits)
    if not value:
        return Invalid("amount", "empty")
    if not _DIGITS.match(value) or len(value) > AMOUNT_MAX_DIGITS:
        return Invalid("amount", "not a number")
    cents = int(value)
    if cents <= 0:
        return Invalid("amount", "zero")
    if cents > balance_cents:
        return Invalid("amount", "exceeds balance")
    return cents


def parse_card(digits: str | None) -> DigitsResult:
    value = _clean(digits)
    if not _DIGITS.match(value):
        return Invalid("card", "not digits")
    if not CARD_MIN_DIGITS <= len(value) <= CARD_MAX_DIGITS:
        return Invalid("card", f"length {len(value)}")
    return value


def parse_expiry(digits: str | None) -> DigitsResult:
    """MMYY: exactly four digits with a month of 01-12."""
    value = _clean(digits)
    if len(value) != 4 or not _DIGITS.match(value):
        return Invalid("expiry", "not four digits")
    if not 1 <= int(value[:2]) <= 12:
        return Invalid("expiry", "bad month")
    return value


def parse_cvv(digits: str | None) -> DigitsResult:
    value = _clean(digits)
    if len(value) not in (3, 4) or not _DIGITS.match(value):
        return Invalid("cvv", "not three or four digits")
    return value


def parse_zip(digits: str | None) -> DigitsResult:
    value = _clean(digits)
    if len(value) != 5 or not _DIGITS.match(value):
        return Invalid("zip", "not five digits")
    return value
