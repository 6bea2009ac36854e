"""
Data conversion and transformation utilities.

Provides type conversion functions for request payloads, money rounding
for payment reports and record deduplication for feed batches.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Dict, Optional

import dateutil.parser


TWO_PLACES = Decimal('0.01')


def convert_to_bool(value: Any) -> bool:
    """
    Convert string boolean value to Python bool.

    Handles None, empty strings, "true"/"false"/"1"/"0" and actual bools.

    Args:
        value: Value to convert (string, bool, or other)

    Returns:
        bool: Converted boolean value (defaults to False for None/empty)
    """
    if value is None or value == "":
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def convert_to_int(value: Any) -> Optional[int]:
    """
    Convert value to integer, handling None and empty strings.

    Args:
        value: Value to convert

    Returns:
        int or None: Converted integer or None if conversion fails
    """
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (ValueError, TypeError):
        return None


def convert_to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert value to Decimal, handling None and empty strings.

    Uses string conversion to preserve precision for monetary
    and hour values.

    Args:
        value: Value to convert

    Returns:
        Decimal or None: Converted Decimal or None if conversion fails
    """
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (ValueError, TypeError, InvalidOperation):
        return None


def convert_to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert value to Python datetime.

    Handles multiple input types:
    - None/empty string: returns None
    - datetime object: returns as-is
    - string: parses using dateutil.parser

    Args:
        value: Datetime string, datetime object, or None

    Returns:
        datetime or None: Parsed datetime or None if parsing fails
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return dateutil.parser.parse(value)
    except (ValueError, TypeError, OverflowError):
        return None


def round_money(value: Any) -> float:
    """
    Round to two decimals, half away from zero.

    Every hours/amount figure in a payment report goes through this so that
    regenerating a report yields identical totals.

    Example:
        >>> round_money(2.675)
        2.68
    """
    return float(Decimal(str(value or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def deduplicate_records(
    data: List[Dict[str, Any]],
    key_columns: List[str]
) -> List[Dict[str, Any]]:
    """
    Deduplicate records by composite key, keeping last occurrence.

    Args:
        data: List of record dictionaries
        key_columns: List of column names that form the unique key

    Returns:
        Deduplicated list of records (keeps last duplicate)

    Example:
        >>> records = [
        ...     {'uid': 'a', 'title': 'Old'},
        ...     {'uid': 'a', 'title': 'New'},  # duplicate
        ...     {'uid': 'b', 'title': 'Other'},
        ... ]
        >>> deduplicate_records(records, ['uid'])
        [{'uid': 'a', 'title': 'New'}, {'uid': 'b', 'title': 'Other'}]
    """
    seen = {}
    for record in data:
        key = tuple(record.get(col) for col in key_columns)
        seen[key] = record  # Later records overwrite earlier ones
    return list(seen.values())
