# capbook/company/cnpj.py
"""
CNPJ format and checksum validation (modulo 11, two check digits).

Every verification job is created from a number that passed
``normalize_cnpj``; the registry is never asked about malformed input.
"""

from __future__ import annotations

import re

from capbook.exceptions import InvalidRegistrationNumberError
from capbook.redact import digits_only

_FORMATTED = re.compile(r"^\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}$")
_WEIGHTS_1 = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_WEIGHTS_2 = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def _check_digit(digits: str, weights: tuple[int, ...]) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cnpj(value: str | None) -> bool:
    raw = (value or "").strip()
    if not raw or not _FORMATTED.match(raw):
        return False
    digits = digits_only(raw)
    if len(digits) != 14:
        return False
    # all-same-digit numbers pass the checksum but are never issued
    if len(set(digits)) == 1:
        return False
    if int(digits[12]) != _check_digit(digits[:12], _WEIGHTS_1):
        return False
    return int(digits[13]) == _check_digit(digits[:13], _WEIGHTS_2)


def normalize_cnpj(value: str | None) -> str:
    """Return the 14 bare digits, or raise InvalidRegistrationNumberError."""
    if not is_valid_cnpj(value):
        raise InvalidRegistrationNumberError(
            "CNPJ is malformed or fails checksum validation",
            details={"cnpjLastFour": digits_only(value)[-4:]},
        )
    return digits_only(value)


def format_cnpj(value: str) -> str:
    d = digits_only(value)
    if len(d) != 14:
        return value
    return f"{d[:2]}.{d[2:5]}.{d[5:8]}/{d[8:12]}-{d[12:]}"
