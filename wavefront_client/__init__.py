"""
Wavefront client for sending metrics, histograms and tracing spans,
either through a Wavefront proxy or by direct ingestion.
"""
from .client import WavefrontClient
from .direct import WavefrontDirectIngestionClient
from .entities import (
    DAY,
    HOUR,
    MINUTE,
    HistogramDistribution,
    HistogramGranularity,
    MetricPoint,
    Span,
    SpanLog,
)
from .exceptions import (
    DeliveryFailure,
    ProxyConnectionError,
    QueueOverflow,
    UnsupportedOperation,
    ValidationError,
    WavefrontClientError,
)
from .factory import create_client
from .proxy import WavefrontProxyClient
from .utils import new_id

__all__ = [
    'WavefrontClient',
    'WavefrontProxyClient',
    'WavefrontDirectIngestionClient',
    'create_client',
    'MetricPoint',
    'HistogramDistribution',
    'HistogramGranularity',
    'Span',
    'SpanLog',
    'MINUTE',
    'HOUR',
    'DAY',
    'new_id',
    'WavefrontClientError',
    'ValidationError',
    'UnsupportedOperation',
    'ProxyConnectionError',
    'DeliveryFailure',
    'QueueOverflow',
]
