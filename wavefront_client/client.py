"""
Transport-agnostic client interface.

Callers hold a WavefrontClient and never depend on the concrete transport:

    client = WavefrontProxyClient('localhost', metrics_port=2878)
    client.send_metric('new-york.power.usage', 42422.0, None, 'localhost', {'datacenter': 'dc1'})
    client.close()
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Tuple

from . import encoder
from .entities import HistogramDistribution, MetricPoint, Span, SpanLog
from .exceptions import ValidationError


def _to_span_log(span_log) -> SpanLog:
    if isinstance(span_log, SpanLog):
        return span_log
    if isinstance(span_log, Mapping) and 'fields' in span_log:
        if span_log.get('timestamp') is None:
            return SpanLog(fields=span_log['fields'])
        return SpanLog(fields=span_log['fields'], timestamp=span_log['timestamp'])
    raise ValidationError(f"Span log must be a SpanLog or a dict with 'fields': {span_log!r}")


class WavefrontClient(ABC):
    """
    Capability set shared by the proxy and direct ingestion clients.

    All send methods encode synchronously, so a ValidationError is raised to
    the caller before anything is written or queued.
    """

    @abstractmethod
    def send_metric(self, name: str, value: float, timestamp, source: str,
                    tags: Optional[Dict[str, str]] = None) -> None:
        """
        Send a point metric.

        Args:
            name (str): Metric name, e.g. 'new-york.power.usage'
            value (float): Metric value
            timestamp (int, datetime or None): Epoch seconds; None lets the
                backend assign the receipt time
            source (str): Reporting entity
            tags (dict, optional): Point tags
        """

    @abstractmethod
    def send_distribution(self, name: str, centroids: List[Tuple[float, int]], granularities,
                          timestamp, source: str, tags: Optional[Dict[str, str]] = None) -> None:
        """
        Send a histogram distribution.

        Args:
            name (str): Histogram name
            centroids (list): (value, count) pairs, sent in the order given
            granularities (set): Any of MINUTE, HOUR, DAY
            timestamp (int, datetime or None): Epoch seconds
            source (str): Reporting entity
            tags (dict, optional): Point tags
        """

    @abstractmethod
    def send_span(self, name: str, start_millis, duration_millis: int, source: str,
                  trace_id, span_id, parents=None, follows_from=None, tags=None,
                  span_logs=None) -> None:
        """
        Send a tracing span.

        Args:
            name (str): Operation name
            start_millis (int or datetime): Start time in epoch milliseconds
            duration_millis (int): Duration in milliseconds
            source (str): Reporting entity
            trace_id (str or UUID): Trace identifier
            span_id (str or UUID): Span identifier
            parents (list, optional): Parent span identifiers
            follows_from (list, optional): Follows-from span identifiers
            tags (dict or list, optional): Span tags; a list of pairs allows repeated keys
            span_logs (list, optional): SpanLog objects or dicts with 'fields'
                and an optional 'timestamp'
        """

    @abstractmethod
    def close(self) -> int:
        """
        Release all network resources. Safe to call more than once.

        Returns:
            int: Number of lines discarded during shutdown
        """

    @abstractmethod
    def get_failure_count(self) -> int:
        """Number of failed deliveries since the client was created."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @staticmethod
    def _metric_line(name, value, timestamp, source, tags) -> str:
        point = MetricPoint(name=name, value=value, source=source,
                            timestamp=timestamp, tags=tags or {})
        return encoder.metric_to_line_data(point)

    @staticmethod
    def _distribution_lines(name, centroids, granularities, timestamp, source, tags) -> List[str]:
        distribution = HistogramDistribution(
            name=name,
            centroids=centroids,
            granularities=granularities,
            source=source,
            timestamp=timestamp,
            tags=tags or {},
        )
        return encoder.histogram_to_line_data(distribution)

    @staticmethod
    def _span_lines(name, start_millis, duration_millis, source, trace_id, span_id,
                    parents, follows_from, tags, span_logs) -> Tuple[str, Optional[str]]:
        """
        Encode a span and, when it carries logs, its span log record.

        Returns:
            tuple: (span line, span log line or None)
        """
        span = Span(
            name=name,
            start_millis=start_millis,
            duration_millis=duration_millis,
            source=source,
            trace_id=trace_id,
            span_id=span_id,
            parents=parents or [],
            follows_from=follows_from or [],
            tags=tags or [],
            span_logs=[_to_span_log(span_log) for span_log in span_logs or ()],
        )
        span_line = encoder.tracing_span_to_line_data(span)
        if not span.span_logs:
            return span_line, None
        return span_line, encoder.span_logs_to_line_data(span, span_line)
