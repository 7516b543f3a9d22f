"""Deterministic identifiers and secrets.

customer_id_for_phone expects a phone already normalized with
slotbook.utils.normalization.normalize_phone; two spellings of the same
number only map to the same customer if normalization ran first.
"""

import hashlib
import re
import secrets

from slotbook.core.config import settings

CUSTOMER_ID_PREFIX = "cust_"
CANCEL_CODE_BYTES = 24


def customer_id_for_phone(phone_e164: str) -> str:
    """Customer id derived from an E.164 phone number."""
    if not phone_e164.startswith("+"):
        raise ValueError("phone must be E.164 (+<country><number>)")
    digits = re.sub(r"\D", "", phone_e164)
    return CUSTOMER_ID_PREFIX + hashlib.sha256(digits.encode()).hexdigest()[:24]


def generate_cancel_code() -> str:
    """Generate the customer-facing cancellation secret."""
    return secrets.token_urlsafe(CANCEL_CODE_BYTES)


def hash_cancel_code(code: str, pepper: str | None = None) -> str:
    """Salted hash of a cancel code; only this value is persisted."""
    salt = settings.CANCEL_CODE_PEPPER if pepper is None else pepper
    return hashlib.sha256(f"{salt}:{code}".encode()).hexdigest()


def to_gateway_number(phone_e164: str) -> str:
    """Gateway addressing: E.164 digits without the leading plus."""
    return re.sub(r"\D", "", phone_e164)
