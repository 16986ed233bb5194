"""
Wavefront line protocol encoder.

Metrics:
    <metricName> <metricValue> [<timestamp>] source=<source> [pointTags]

Histograms (one line per granularity):
    {!M | !H | !D} [<timestamp>] #<count> <value> [centroids] <histogramName> source=<source> [pointTags]

Tracing spans:
    <spanName> source=<source> traceId=<id> spanId=<id> [parent=<id> ...]
    [followsFrom=<id> ...] [spanTags] <startMillis> <durationMillis>

All functions are pure and raise ValidationError for input they cannot encode.
"""
import json
import re
from decimal import Decimal
from typing import List, Tuple

from .entities import HistogramDistribution, MetricPoint, Span
from .exceptions import ValidationError
from .utils import to_epoch_millis, to_epoch_seconds
from .validation import (
    validate_centroids,
    validate_duration,
    validate_granularities,
    validate_identifier,
    validate_identifiers,
    validate_name,
    validate_source,
    validate_span_log_fields,
    validate_tags,
    validate_value,
)

_NEEDS_QUOTES_RE = re.compile(r'[\s"]')

SPAN_LOGS_TAG = '_spanLogs'


def quote(value: str) -> str:
    """
    Quote a string field if the line protocol requires it.

    Values holding whitespace or a double quote are wrapped in double quotes
    with '"' and '\\' backslash-escaped; anything else is returned unchanged.
    """
    if not _NEEDS_QUOTES_RE.search(value):
        return value
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def format_number(value: float) -> str:
    """
    Render a value in plain decimal form.

    Integral values drop the decimal point (42422.0 -> "42422"), others keep
    the shortest digits that round-trip (5.1 -> "5.1"). Scientific notation is
    never produced.
    """
    text = format(Decimal(repr(float(value))), 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    if text == '-0':
        text = '0'
    return text


def _tags_to_text(tags: List[Tuple[str, str]]) -> List[str]:
    return [f"{key}={quote(value)}" for key, value in tags]


def metric_to_line_data(point: MetricPoint) -> str:
    """
    Encode a point metric.

    Args:
        point (MetricPoint): The metric to encode

    Returns:
        str: e.g. 'new-york.power.usage 42422 source=localhost datacenter=dc1'
    """
    name = validate_name(point.name, 'metric name')
    value = validate_value(point.value)
    source = validate_source(point.source)
    tags = validate_tags(point.tags)

    parts = [quote(name), format_number(value)]
    if point.timestamp is not None:
        parts.append(str(to_epoch_seconds(point.timestamp)))
    parts.append(f"source={quote(source)}")
    parts.extend(_tags_to_text(tags))
    return ' '.join(parts)


def histogram_to_line_data(distribution: HistogramDistribution) -> List[str]:
    """
    Encode a histogram distribution, one line per requested granularity.

    Args:
        distribution (HistogramDistribution): The histogram to encode

    Returns:
        list: Lines in minute, hour, day order, each carrying the same
            centroids, name, source and tags
    """
    name = validate_name(distribution.name, 'histogram name')
    centroids = validate_centroids(distribution.centroids)
    granularities = validate_granularities(distribution.granularities)
    source = validate_source(distribution.source)
    tags = validate_tags(distribution.tags)

    body = []
    if distribution.timestamp is not None:
        body.append(str(to_epoch_seconds(distribution.timestamp)))
    body.extend(f"#{count} {format_number(value)}" for value, count in centroids)
    body.append(quote(name))
    body.append(f"source={quote(source)}")
    body.extend(_tags_to_text(tags))
    body_text = ' '.join(body)

    return [f"{granularity.marker} {body_text}" for granularity in granularities]


def tracing_span_to_line_data(span: Span) -> str:
    """
    Encode a tracing span.

    Parents and follows-from references are emitted as one key=value pair
    each, in the order supplied. A span carrying logs gets a '_spanLogs=true'
    tag so the backend links it to the span log record sent alongside it.

    Args:
        span (Span): The span to encode

    Returns:
        str: The encoded span line
    """
    name = validate_name(span.name, 'span name')
    source = validate_source(span.source)
    trace_id = validate_identifier(span.trace_id, 'trace id')
    span_id = validate_identifier(span.span_id, 'span id')
    parents = validate_identifiers(span.parents, 'parent id')
    follows_from = validate_identifiers(span.follows_from, 'follows-from id')
    tags = validate_tags(span.tags)
    start_millis = to_epoch_millis(span.start_millis)
    duration_millis = validate_duration(span.duration_millis)

    parts = [quote(name), f"source={quote(source)}", f"traceId={trace_id}", f"spanId={span_id}"]
    parts.extend(f"parent={parent}" for parent in parents)
    parts.extend(f"followsFrom={reference}" for reference in follows_from)
    parts.extend(_tags_to_text(tags))
    if span.span_logs and not any(key == SPAN_LOGS_TAG for key, _ in tags):
        parts.append(f"{SPAN_LOGS_TAG}=true")
    parts.append(str(start_millis))
    parts.append(str(duration_millis))
    return ' '.join(parts)


def span_logs_to_line_data(span: Span, span_line: str) -> str:
    """
    Encode the logs of a span as a single-line JSON record.

    Args:
        span (Span): The span whose logs are encoded
        span_line (str): The encoded span, embedded so the backend can match it

    Returns:
        str: JSON with traceId, spanId, logs and span keys
    """
    logs = []
    for span_log in span.span_logs:
        if isinstance(span_log.timestamp, bool) or not isinstance(span_log.timestamp, int):
            raise ValidationError(f"Span log timestamp must be epoch microseconds: {span_log.timestamp!r}")
        fields = validate_span_log_fields(span_log.fields)
        logs.append({'timestamp': span_log.timestamp, 'fields': fields})

    record = {
        'traceId': validate_identifier(span.trace_id, 'trace id'),
        'spanId': validate_identifier(span.span_id, 'span id'),
        'logs': logs,
        'span': span_line,
    }
    # json.dumps escapes control characters, so the record stays on one line
    return json.dumps(record, separators=(',', ':'))
