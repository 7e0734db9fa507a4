"""
Signature and input validation utilities.
"""

import base64
import hashlib
import hmac
import math
import secrets
from typing import Any, Optional


def hmac_sha256_base64(secret: str, body: bytes) -> str:
    """
    Base64-encoded HMAC-SHA256 of a raw body.

    Args:
        secret: Shared webhook secret
        body: Exact request body bytes as received

    Returns:
        Base64 digest string
    """
    digest = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    """Hex-encoded HMAC-SHA256 of a raw body."""
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def signatures_match(provided: Optional[str], expected: str) -> bool:
    """
    Compare signatures in constant time.

    Regular comparison (==) fails fast on the first differing character,
    which lets an attacker recover a valid signature byte by byte from
    response timing. secrets.compare_digest() always compares the whole
    string.

    Args:
        provided: Signature from the request header
        expected: Locally computed signature

    Returns:
        True if both are present and equal
    """
    if not provided or not expected:
        return False

    return secrets.compare_digest(provided.strip().encode('utf-8'), expected.encode('utf-8'))


def parse_amount(
    value: Any,
    field: str,
    allow_zero: bool = True,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None
) -> float:
    """
    Parse a non-negative monetary amount from request input.

    Args:
        value: Raw value (number or numeric string)
        field: Field name used in the error message
        allow_zero: Whether 0 is acceptable
        minimum: Smallest acceptable amount, if bounded
        maximum: Largest acceptable amount, if bounded

    Returns:
        Amount as float

    Raises:
        ValueError: If missing, not numeric, negative, out of bounds or not finite
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Missing or invalid {field}")

    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a number")

    if math.isnan(amount) or math.isinf(amount):
        raise ValueError(f"{field} must be a finite number")

    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError(f"{field} must be positive")

    if minimum is not None and amount < minimum:
        raise ValueError(f"{field} must be at least {minimum:g}")

    if maximum is not None and amount > maximum:
        raise ValueError(f"{field} must not exceed {maximum:g}")

    return amount
