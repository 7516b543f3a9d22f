"""Data normalization utilities for customer identity fields."""

import re
from typing import Optional

from slotbook.core.config import settings


def normalize_phone(phone: Optional[str], country_code: str | None = None) -> Optional[str]:
    """
    Normalize phone to E.164 format (+5511999990000).

    Accepts:
    - Already international: +55 (11) 99999-0000 → +5511999990000
    - National with area code, 10-11 digits: 11999990000 → +5511999990000
    - Country code without plus, 12-13 digits: 5511999990000 → +5511999990000

    Args:
        phone: Raw phone input
        country_code: Country calling code for national numbers (default from settings)

    Returns:
        E.164 formatted phone or None if empty

    Raises:
        ValueError: If phone cannot be read as an E.164 number
    """
    if not phone:
        return None

    code = country_code or settings.DEFAULT_COUNTRY_CODE
    cleaned = phone.strip()
    if cleaned.startswith("+"):
        digits = re.sub(r"\D", "", cleaned[1:])
        if 8 <= len(digits) <= 15:
            return f"+{digits}"
        raise ValueError(f"Invalid phone number '{phone}'.")

    digits = re.sub(r"\D", "", cleaned)
    # Trunk prefix (0xx) used when dialing nationally
    if digits.startswith("0") and len(digits) in (11, 12):
        digits = digits[1:]

    if len(digits) in (10, 11):
        return f"+{code}{digits}"
    if digits.startswith(code) and len(digits) in (len(code) + 10, len(code) + 11):
        return f"+{digits}"

    raise ValueError(
        f"Invalid phone number '{phone}'. Use area code + number (e.g., 11999990000)."
    )


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Collapse whitespace and title-case a person name."""
    if not name:
        return None
    collapsed = " ".join(name.split())
    if not collapsed:
        return None
    return " ".join(part[:1].upper() + part[1:] for part in collapsed.split(" "))


def is_initial(last_name: Optional[str]) -> bool:
    """True for placeholder last names like "S." sent by returning customers."""
    if not last_name:
        return False
    return len(last_name) == 2 and last_name.endswith(".")


def extract_phone_last4(phone: Optional[str]) -> Optional[str]:
    """
    Extract last 4 digits from a normalized phone number.
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    return digits[-4:] if len(digits) >= 4 else digits


def mask_phone(phone: Optional[str]) -> str:
    """Log-safe phone rendering (last 4 digits only)."""
    last4 = extract_phone_last4(phone)
    return f"***{last4}" if last4 else ""
