"""
Data model for the telemetry handed to the Wavefront client.

Instances are transient: the clients build one from the caller's arguments,
encode it, and discard it once the encoded lines are handed to a transport.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .utils import now_micros

Timestamp = Union[int, float, datetime]
Identifier = Union[str, uuid.UUID]
SpanTags = Union[Mapping[str, str], Sequence[Tuple[str, str]]]


class HistogramGranularity(Enum):
    """Time bucket at which the backend aggregates a histogram."""
    MINUTE = '!M'
    HOUR = '!H'
    DAY = '!D'

    @property
    def marker(self) -> str:
        return self.value


MINUTE = HistogramGranularity.MINUTE
HOUR = HistogramGranularity.HOUR
DAY = HistogramGranularity.DAY

# Histogram lines are always emitted in this order
GRANULARITY_ORDER = (MINUTE, HOUR, DAY)


@dataclass
class MetricPoint:
    """A single point metric."""
    name: str
    value: float
    source: str
    timestamp: Optional[Timestamp] = None
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class HistogramDistribution:
    """A histogram summarised as (value, count) centroids."""
    name: str
    centroids: List[Tuple[float, int]]
    granularities: Iterable[HistogramGranularity]
    source: str
    timestamp: Optional[Timestamp] = None
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class SpanLog:
    """A timestamped set of key/value annotations attached to a span.

    Attributes:
        fields (dict): Annotation keys and values
        timestamp (int): Epoch microseconds, defaults to now
    """
    fields: Dict[str, str]
    timestamp: int = field(default_factory=now_micros)


@dataclass
class Span:
    """A single timed operation within a distributed trace."""
    name: str
    start_millis: Timestamp
    duration_millis: int
    source: str
    trace_id: Identifier
    span_id: Identifier
    parents: List[Identifier] = field(default_factory=list)
    follows_from: List[Identifier] = field(default_factory=list)
    tags: SpanTags = field(default_factory=list)
    span_logs: List[SpanLog] = field(default_factory=list)
