"""
Timestamp and identifier helpers shared by the encoder and the clients.
"""
import uuid
from datetime import datetime

import pytz

from .exceptions import ValidationError


def _as_aware(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value


def to_epoch_seconds(value) -> int:
    """
    Convert a timestamp to whole epoch seconds.

    Args:
        value (int, float or datetime): Epoch seconds or a datetime

    Returns:
        int: Epoch seconds

    Raises:
        ValidationError: If the value is not a usable timestamp
    """
    if isinstance(value, datetime):
        return int(_as_aware(value).timestamp())
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Invalid timestamp: {value!r}")
    if value != value or value in (float('inf'), float('-inf')):
        raise ValidationError(f"Invalid timestamp: {value!r}")
    return int(value)


def to_epoch_millis(value) -> int:
    """
    Convert a span start time to whole epoch milliseconds.

    Args:
        value (int, float or datetime): Epoch milliseconds or a datetime

    Returns:
        int: Epoch milliseconds
    """
    if isinstance(value, datetime):
        return int(_as_aware(value).timestamp() * 1000)
    return to_epoch_seconds(value)


def now_micros() -> int:
    """Current time in epoch microseconds, used for span log timestamps."""
    return int(datetime.now(pytz.UTC).timestamp() * 1000000)


def new_id() -> str:
    """Generate a random 128-bit identifier in canonical UUID form."""
    return str(uuid.uuid4())
