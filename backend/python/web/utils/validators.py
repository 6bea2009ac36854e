"""
Input validation utilities.

Validation functions for listing, feed and cleaner payloads. Each returns
``(is_valid, message)`` like the form validators it grew out of.
"""

import re
from decimal import Decimal, InvalidOperation
from urllib.parse import urlparse

HEX_COLOR_RE = re.compile(r'^#(?:[0-9a-fA-F]{3}){1,2}$')
TIME_RE = re.compile(r'^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$')


def validate_required(data, *fields):
    """
    Check that every field is present and non-empty.

    Returns:
        tuple: (is_valid: bool, message: str)
    """
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        return False, f"Missing required fields: {', '.join(missing)}"
    return True, "OK"


def validate_feed_url(url):
    """
    Validate an iCal feed URL.

    Requirements:
    - http or https scheme
    - A host part

    Returns:
        tuple: (is_valid: bool, message: str)
    """
    if not url:
        return False, "Feed URL is required"

    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return False, "Feed URL must be an http(s) URL"

    return True, "URL is valid"


def validate_color(color):
    """Colors are optional; when given they must be #rgb or #rrggbb."""
    if color in (None, ''):
        return True, "No color"
    if not HEX_COLOR_RE.match(color):
        return False, "Color must be a hex value like #3b82f6"
    return True, "Color is valid"


def validate_time(value):
    """Validate an HH:MM or HH:MM:SS checkout time."""
    if not value:
        return False, "Time is required"
    if not TIME_RE.match(value):
        return False, "Time must be HH:MM or HH:MM:SS"
    return True, "Time is valid"


def validate_non_negative(value, name, allow_empty=True):
    """
    Validate hours, rates and other amounts.

    Returns:
        tuple: (is_valid: bool, message: str)
    """
    if value in (None, ''):
        if allow_empty:
            return True, f"No {name}"
        return False, f"{name} is required"

    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return False, f"{name} must be a number"

    if not amount.is_finite() or amount < 0:
        return False, f"{name} must be a non-negative number"

    return True, f"{name} is valid"


def normalize_time(value):
    """Pad HH:MM to HH:MM:SS."""
    return value if value.count(':') == 2 else f"{value}:00"
