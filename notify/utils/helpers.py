"""
Helper functions for Notify.

This module contains formatting and normalization utilities used across the
application.
"""

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

_NON_DIGITS = re.compile(r"\D")
_ID_ALPHABET = string.ascii_uppercase + string.digits


def only_digits(value: Optional[str]) -> str:
    """Strip everything but digits"""
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


def new_entity_id(prefix: str, length: int = 9) -> str:
    """Opaque id such as NOT-7K2QX0B1M"""
    return f"{prefix}-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def mask_document(document: Optional[str]) -> str:
    """Partially mask a CPF or CNPJ for display in outbound messages."""
    digits = only_digits(document)
    if len(digits) == 11:
        return f"***.{digits[3:6]}.{digits[6:9]}-**"
    if len(digits) == 14:
        return f"**.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-**"
    if not digits:
        return ""
    return "*" * max(len(digits) - 4, 0) + digits[-4:]


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Brazilian phone number to the international digits format.

    A leading trunk zero is dropped and the 55 country code is added to
    local numbers (area code plus 8 or 9 digits).
    """
    digits = only_digits(phone)
    if digits.startswith("0"):
        digits = digits.lstrip("0")
    if not digits:
        return None
    if len(digits) <= 11:
        digits = "55" + digits
    return digits


def format_date_br(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")


def timestamp_millis(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return int(now.timestamp() * 1000)
