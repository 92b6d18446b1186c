"""
Input validation helpers for escrow creation, settlement addresses and messages.

Validators return an error string (or None) instead of raising, so callers can
collect every violation before rejecting a request.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from config import Config

# ReDoS-safe pattern, same shape as the invitation e-mail check
EMAIL_PATTERN = re.compile(
    r'^[a-zA-Z0-9]([a-zA-Z0-9._+-]*[a-zA-Z0-9])?@[a-zA-Z0-9]([a-zA-Z0-9.-]*[a-zA-Z0-9])?\.[a-zA-Z]{2,}$'
)
EVM_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')


def is_valid_email(email: Optional[str]) -> bool:
    """Check if the input is a valid email address"""
    if not email or not isinstance(email, str):
        return False
    # RFC 5321 limit
    if len(email) > 254:
        return False
    return EMAIL_PATTERN.match(email.strip().lower()) is not None


def is_valid_settlement_address(address: Optional[str]) -> bool:
    """Settlement addresses are EVM accounts: 0x followed by 40 hex digits"""
    if not address or not isinstance(address, str):
        return False
    return EVM_ADDRESS_PATTERN.match(address) is not None


def settlement_address_error(address: Any) -> Optional[str]:
    if address is None or (isinstance(address, str) and not address.strip()):
        return "Settlement address is required"
    if not is_valid_settlement_address(address.strip() if isinstance(address, str) else address):
        return "Invalid wallet address format (expected 0x followed by 40 hex characters)"
    return None


def parse_amount(value: Any) -> Tuple[Optional[Decimal], Optional[str]]:
    """
    Parse a user-supplied amount into a Decimal.

    Floats are converted through str() so 5.1 stays 5.1 rather than its binary
    approximation.

    Returns:
        (amount, None) on success, (None, reason) on failure
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None, "Amount is required"
    if isinstance(value, bool):
        return None, "Amount must be a number"

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None, "Amount must be a number"

    if not amount.is_finite():
        return None, "Amount must be a finite number"
    if amount <= 0:
        return None, "Amount must be greater than zero"
    if amount > Config.AMOUNT_MAX_VALUE:
        return None, "Amount is too large"

    exponent = amount.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > Config.AMOUNT_MAX_DECIMAL_PLACES:
        return None, f"Amount supports at most {Config.AMOUNT_MAX_DECIMAL_PLACES} decimal places"

    return amount, None


def required_text_error(value: Any, label: str, max_length: int) -> Optional[str]:
    if value is None or not isinstance(value, str) or not value.strip():
        return f"{label} is required"
    if len(value.strip()) > max_length:
        return f"{label} must be at most {max_length} characters"
    return None


def optional_text_error(value: Any, label: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        return f"{label} must be text"
    if len(value.strip()) > max_length:
        return f"{label} must be at most {max_length} characters"
    return None
