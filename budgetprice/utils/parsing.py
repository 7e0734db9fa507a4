"""
Lenient converters for platform JSON payloads.

Platforms send prices as strings, omit fields freely and use several
timestamp formats; these helpers turn all of that into plain Python values
without raising.
"""

import math
from datetime import datetime
from typing import Any, List, Optional


def to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """
    Convert a price-like value to float.

    Args:
        value: Number, numeric string, or None
        default: Returned for missing or unparseable values

    Returns:
        Float value, or default
    """
    if value is None or value == '' or isinstance(value, bool):
        return default

    try:
        number = float(value)
    except (TypeError, ValueError):
        return default

    if math.isnan(number) or math.isinf(number):
        return default

    return number


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    number = to_float(value)
    return int(number) if number is not None else default


def to_id(value: Any) -> str:
    """Platform IDs come as ints or strings; normalize to str ('' if missing)."""
    return '' if value is None else str(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 ("2024-01-05T10:00:00Z", "...+02:00") and Magento
    ("2024-01-05 10:00:00") timestamps.

    Returns:
        datetime, or None if missing or unparseable
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def split_tags(value: Any) -> List[str]:
    """
    Normalize tags given as "a, b,c" or as a list.

    Returns:
        List of non-empty, stripped tags
    """
    if not value:
        return []

    if isinstance(value, str):
        parts = value.split(',')
    else:
        parts = [
            item.get('name', '') if isinstance(item, dict) else str(item)
            for item in value
        ]

    return [part.strip() for part in parts if part and part.strip()]


def flatten_query(data: Any, prefix: str = '') -> List[tuple]:
    """
    Flatten nested dicts/lists into bracketed query parameters.

    {"searchCriteria": {"pageSize": 20}} -> [("searchCriteria[pageSize]", "20")]

    Args:
        data: Nested structure
        prefix: Key prefix for recursion

    Returns:
        List of (key, value) pairs in input order
    """
    pairs = []

    if isinstance(data, dict):
        items = data.items()
    elif isinstance(data, (list, tuple)):
        items = enumerate(data)
    else:
        return [(prefix, _query_value(data))]

    for key, value in items:
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, (dict, list, tuple)):
            pairs.extend(flatten_query(value, name))
        elif value is not None:
            pairs.append((name, _query_value(value)))

    return pairs


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)
