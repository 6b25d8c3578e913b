"""
Phone number normalization for the /call endpoint.

Callers usually pass numbers without the leading '+': in a raw query
string a '+' decodes to a space. We trim, drop one leading '+', and put
it back, then require 10-15 digits.
"""
from __future__ import annotations

import re
from typing import Optional

E164_PATTERN = re.compile(r"^\+\d{10,15}$")

INVALID_NUMBER_MESSAGE = (
    "Invalid to or from phone number. "
    "Must be a number with 10-15 digits (e.g., 12345678912)"
)


class ValidationError(ValueError):
    """Malformed caller input; nothing was mutated."""


def normalize_e164(raw: Optional[str]) -> str:
    if raw is None:
        raise ValidationError(INVALID_NUMBER_MESSAGE)
    number = "+" + raw.strip().removeprefix("+")
    if not E164_PATTERN.match(number):
        raise ValidationError(INVALID_NUMBER_MESSAGE)
    return number


def normalize_call_endpoints(to: Optional[str], from_: Optional[str]) -> tuple[str, str]:
    return normalize_e164(to), normalize_e164(from_)
