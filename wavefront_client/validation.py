"""
Validation of names, sources, tags, identifiers and values before encoding.

Every check raises :class:`~wavefront_client.exceptions.ValidationError` so a
malformed point is rejected synchronously and never reaches a transport.
"""
import math
import re
from typing import Iterable, List, Mapping, Optional, Tuple

from .entities import GRANULARITY_ORDER, HistogramGranularity
from .exceptions import ValidationError

_IDENTIFIER_RE = re.compile(
    r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
_WHITESPACE_RE = re.compile(r'\s')


def has_control_characters(value: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7f for ch in value)


def _validate_text(value, what: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{what} must be a string, got {type(value).__name__}")
    if not value:
        raise ValidationError(f"{what} must not be empty")
    if has_control_characters(value):
        raise ValidationError(f"{what} must not contain control characters: {value!r}")
    return value


def validate_name(name, what: str = 'name') -> str:
    """
    Validate a metric, histogram or span name.

    Args:
        name (str): The name to check
        what (str): Label used in the error message

    Returns:
        str: The validated name

    Raises:
        ValidationError: If the name is empty, not a string, or holds control characters
    """
    return _validate_text(name, what)


def validate_source(source) -> str:
    """Validate the source (reporting entity) of a point or span."""
    return _validate_text(source, 'source')


def validate_tag_key(key) -> str:
    key = _validate_text(key, 'tag key')
    if _WHITESPACE_RE.search(key) or '"' in key or '=' in key:
        raise ValidationError(f"Invalid tag key: {key!r}")
    return key


def validate_tag_value(key: str, value) -> str:
    return _validate_text(value, f"value of tag {key!r}")


def validate_tags(tags) -> List[Tuple[str, str]]:
    """
    Validate point or span tags.

    Args:
        tags (dict or list): A mapping of tag keys to values, or a sequence of
            (key, value) pairs when a key may repeat. None means no tags.

    Returns:
        list: The validated (key, value) pairs, in the order given

    Raises:
        ValidationError: If any key or value is invalid
    """
    if tags is None:
        return []
    if isinstance(tags, Mapping):
        pairs = list(tags.items())
    else:
        try:
            pairs = [(key, value) for key, value in tags]
        except (TypeError, ValueError):
            raise ValidationError(f"Tags must be a mapping or a sequence of pairs: {tags!r}")
    return [(validate_tag_key(key), validate_tag_value(key, value)) for key, value in pairs]


def validate_value(value, what: str = 'value') -> float:
    """Validate a finite numeric value and return it as a float."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{what} must be a number, got {value!r}")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{what} must be finite, got {value!r}")
    return value


def validate_identifier(value, what: str = 'identifier') -> str:
    """
    Validate a trace or span identifier.

    Args:
        value (str or uuid.UUID): The identifier in canonical 8-4-4-4-12 hex form
        what (str): Label used in the error message

    Returns:
        str: The identifier as lower-case canonical text
    """
    text = str(value) if not isinstance(value, str) else value
    if not _IDENTIFIER_RE.match(text):
        raise ValidationError(f"Invalid {what}: {value!r}")
    return text.lower()


def validate_identifiers(values: Optional[Iterable], what: str) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise ValidationError(f"{what} must be a sequence of identifiers, got a string")
    return [validate_identifier(value, what) for value in values]


def validate_duration(duration) -> int:
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise ValidationError(f"Span duration must be a number, got {duration!r}")
    if duration != duration or duration < 0 or duration == float('inf'):
        raise ValidationError(f"Span duration must be a non-negative number, got {duration!r}")
    return int(duration)


def validate_centroids(centroids) -> List[Tuple[float, int]]:
    """
    Validate histogram centroids, preserving the caller's order.

    Args:
        centroids (list): (value, count) pairs; count is an integer >= 1

    Returns:
        list: The validated (value, count) pairs
    """
    if not centroids:
        raise ValidationError("A distribution needs at least one centroid")
    validated = []
    for centroid in centroids:
        try:
            value, count = centroid
        except (TypeError, ValueError):
            raise ValidationError(f"Centroid must be a (value, count) pair: {centroid!r}")
        if isinstance(count, float) and count.is_integer():
            count = int(count)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError(f"Centroid count must be an integer >= 1: {centroid!r}")
        validated.append((validate_value(value, 'centroid value'), count))
    return validated


def validate_granularities(granularities) -> List[HistogramGranularity]:
    """
    Validate requested histogram granularities.

    Members of :class:`HistogramGranularity` and their markers ('!M', '!H',
    '!D') are accepted.

    Returns:
        list: The distinct granularities in minute, hour, day order
    """
    if isinstance(granularities, (HistogramGranularity, str)):
        granularities = [granularities]
    if not granularities:
        raise ValidationError("A distribution needs at least one granularity")
    requested = set()
    for granularity in granularities:
        try:
            requested.add(HistogramGranularity(granularity))
        except ValueError:
            raise ValidationError(f"Unknown histogram granularity: {granularity!r}")
    return [granularity for granularity in GRANULARITY_ORDER if granularity in requested]


def validate_span_log_fields(fields) -> dict:
    """Span log fields travel as JSON, so only keys are restricted."""
    if not isinstance(fields, Mapping):
        raise ValidationError(f"Span log fields must be a mapping: {fields!r}")
    validated = {}
    for key, value in fields.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f"Span log field key must be a non-empty string: {key!r}")
        if not isinstance(value, str):
            raise ValidationError(f"Value of span log field {key!r} must be a string")
        validated[key] = value
    return validated
