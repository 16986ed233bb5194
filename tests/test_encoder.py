"""Tests for the Wavefront line protocol encoder."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import parse_metric_line, split_pair, tokenize
from wavefront_client.encoder import (
    format_number,
    histogram_to_line_data,
    metric_to_line_data,
    quote,
    span_logs_to_line_data,
    tracing_span_to_line_data,
)
from wavefront_client.entities import (
    DAY,
    HOUR,
    MINUTE,
    HistogramDistribution,
    MetricPoint,
    Span,
    SpanLog,
)
from wavefront_client.exceptions import ValidationError

TRACE_ID = '7b3bf470-9456-11e8-9eb6-529269fb1459'
SPAN_ID = '0313bafe-9457-11e8-9eb6-529269fb1459'
PARENT_ID = '2f64e538-9457-11e8-9eb6-529269fb1459'


def make_span(**overrides) -> Span:
    fields = dict(
        name='getAllProxyUsers',
        start_millis=1533529977000,
        duration_millis=343500,
        source='localhost',
        trace_id=TRACE_ID,
        span_id=SPAN_ID,
    )
    fields.update(overrides)
    return Span(**fields)


class TestMetricEncoding:
    """Tests for point metric lines."""

    def test_example_metric_without_timestamp(self) -> None:
        """The documented example omits the timestamp segment entirely."""
        point = MetricPoint('new-york.power.usage', 42422.0, 'localhost', tags={'datacenter': 'dc1'})

        line = metric_to_line_data(point)

        assert line == 'new-york.power.usage 42422 source=localhost datacenter=dc1'

    def test_metric_with_timestamp(self) -> None:
        """A timestamp is rendered as whole seconds after the value."""
        point = MetricPoint('cpu.load', 0.75, 'host1', timestamp=1533529977)

        assert metric_to_line_data(point) == 'cpu.load 0.75 1533529977 source=host1'

    def test_datetime_timestamp_is_converted(self) -> None:
        """Aware and naive datetimes are converted to epoch seconds as UTC."""
        aware = datetime(2018, 8, 6, 4, 32, 57, tzinfo=timezone.utc)
        naive = datetime(2018, 8, 6, 4, 32, 57)

        aware_line = metric_to_line_data(MetricPoint('m', 1, 's', timestamp=aware))
        naive_line = metric_to_line_data(MetricPoint('m', 1, 's', timestamp=naive))

        assert aware_line == 'm 1 1533529977 source=s'
        assert naive_line == aware_line

    def test_round_trip_recovers_all_fields(self) -> None:
        """Parsing an encoded metric recovers name, value, timestamp, source and tags."""
        tags = {'env': 'prod', 'note': 'has space', 'quoted': 'say "hi"', 'path': 'C:\\tmp'}
        point = MetricPoint('app.requests.count', 1234.5, 'web 01', timestamp=1700000000, tags=tags)

        parsed = parse_metric_line(metric_to_line_data(point))

        assert parsed == {
            'name': 'app.requests.count',
            'value': 1234.5,
            'timestamp': 1700000000,
            'source': 'web 01',
            'tags': tags,
        }

    def test_line_has_no_newline(self) -> None:
        """Encoded metrics are a single line."""
        line = metric_to_line_data(MetricPoint('m', 1.0, 's', tags={'a': 'b c'}))

        assert '\n' not in line

    @pytest.mark.parametrize('name', ['', 'bad\nname', 'tab\tname', 'bell\x07'])
    def test_invalid_name_is_rejected(self, name) -> None:
        """Empty names and names with control characters are rejected."""
        with pytest.raises(ValidationError):
            metric_to_line_data(MetricPoint(name, 1.0, 'host'))

    @pytest.mark.parametrize('source', ['', None, 'multi\nline'])
    def test_invalid_source_is_rejected(self, source) -> None:
        """Empty, missing or multi-line sources are rejected."""
        with pytest.raises(ValidationError):
            metric_to_line_data(MetricPoint('m', 1.0, source))

    @pytest.mark.parametrize('value', [float('nan'), float('inf'), '12', None, True])
    def test_invalid_value_is_rejected(self, value) -> None:
        """Values must be finite numbers."""
        with pytest.raises(ValidationError):
            metric_to_line_data(MetricPoint('m', value, 'host'))

    @pytest.mark.parametrize('tags', [
        {'bad key': 'v'},
        {'k=v': 'v'},
        {'': 'v'},
        {'k': ''},
        {'k': 'line\nbreak'},
        {'k': 5},
    ])
    def test_invalid_tags_are_rejected(self, tags) -> None:
        """Malformed tag keys and values are rejected."""
        with pytest.raises(ValidationError):
            metric_to_line_data(MetricPoint('m', 1.0, 'host', tags=tags))


class TestQuoting:
    """Tests for the string escaping rule."""

    @pytest.mark.parametrize('value', ['dc1', 'us-west', 'a.b.c', 'C:\\tmp', 'k=v'])
    def test_plain_values_are_bare(self, value) -> None:
        """Values without whitespace or quotes are emitted unchanged."""
        assert quote(value) == value

    @pytest.mark.parametrize('value', ['has space', 'tab\there', 'say "hi"', 'back\\slash and space'])
    def test_values_needing_quotes_are_reversible(self, value) -> None:
        """Quoted values tokenize back to the original string."""
        quoted = quote(value)

        assert quoted.startswith('"') and quoted.endswith('"')
        assert tokenize(quoted) == [value]

    def test_escapes_quote_and_backslash(self) -> None:
        """Inner quotes and backslashes are backslash-escaped."""
        assert quote('a "b" \\c') == '"a \\"b\\" \\\\c"'


class TestNumberFormatting:
    """Tests for canonical numeric rendering."""

    @pytest.mark.parametrize('value,expected', [
        (42422.0, '42422'),
        (30, '30'),
        (5.1, '5.1'),
        (0.0, '0'),
        (-0.0, '0'),
        (-2.5, '-2.5'),
        (1e20, '100000000000000000000'),
        (1e-7, '0.0000001'),
        (123456.789, '123456.789'),
    ])
    def test_format_number(self, value, expected) -> None:
        """No scientific notation, no trailing zeros, integral values without a point."""
        assert format_number(value) == expected

    @pytest.mark.parametrize('value', [0.1, 1 / 3, 2.5e-12, 9007199254740993.0, 1.7976931348623157e308])
    def test_format_number_round_trips(self, value) -> None:
        """The rendered text parses back to the same float."""
        text = format_number(value)

        assert 'e' not in text.lower()
        assert float(text) == value


class TestHistogramEncoding:
    """Tests for histogram distribution lines."""

    def test_example_histogram(self) -> None:
        """Three granularities give three lines with identical bodies."""
        distribution = HistogramDistribution(
            'request.latency', [(30, 20), (5.1, 10)], {DAY, HOUR, MINUTE},
            'appServer1', tags={'region': 'us-west'})

        lines = histogram_to_line_data(distribution)

        assert lines == [
            '!M #20 30 #10 5.1 request.latency source=appServer1 region=us-west',
            '!H #20 30 #10 5.1 request.latency source=appServer1 region=us-west',
            '!D #20 30 #10 5.1 request.latency source=appServer1 region=us-west',
        ]

    def test_one_line_per_requested_granularity(self) -> None:
        """Only the requested granularities are emitted."""
        distribution = HistogramDistribution('h', [(1, 1)], {HOUR}, 'src')

        lines = histogram_to_line_data(distribution)

        assert len(lines) == 1
        assert lines[0].startswith('!H ')

    def test_marker_strings_are_accepted(self) -> None:
        """Granularity markers may be given as strings."""
        distribution = HistogramDistribution('h', [(1, 1)], ['!D', '!M'], 'src')

        assert [line[:2] for line in histogram_to_line_data(distribution)] == ['!M', '!D']

    def test_timestamp_follows_marker(self) -> None:
        """The timestamp sits between the marker and the first centroid."""
        distribution = HistogramDistribution('h', [(2.5, 3)], {MINUTE}, 'src', timestamp=1533529977)

        assert histogram_to_line_data(distribution) == ['!M 1533529977 #3 2.5 h source=src']

    def test_centroid_order_is_preserved(self) -> None:
        """Centroids are emitted in the caller's order, not sorted."""
        centroids = [(9.0, 1), (1.0, 2), (5.0, 3)]
        distribution = HistogramDistribution('h', centroids, {MINUTE}, 'src')

        tokens = tokenize(histogram_to_line_data(distribution)[0])

        assert tokens[1:7] == ['#1', '9', '#2', '1', '#3', '5']

    @pytest.mark.parametrize('centroids', [[], [(1.0, 0)], [(1.0, -1)], [(1.0, 1.5)], [(1.0,)], [('x', 1)]])
    def test_invalid_centroids_are_rejected(self, centroids) -> None:
        """Centroids need a numeric value and an integer count of at least one."""
        with pytest.raises(ValidationError):
            histogram_to_line_data(HistogramDistribution('h', centroids, {MINUTE}, 'src'))

    @pytest.mark.parametrize('granularities', [set(), None, {'!W'}, {'MINUTE'}])
    def test_invalid_granularities_are_rejected(self, granularities) -> None:
        """At least one known granularity is required."""
        with pytest.raises(ValidationError):
            histogram_to_line_data(HistogramDistribution('h', [(1, 1)], granularities, 'src'))


class TestSpanEncoding:
    """Tests for tracing span lines."""

    def test_example_span(self) -> None:
        """Span fields appear in protocol order with start and duration last."""
        span = make_span(
            parents=[PARENT_ID],
            tags=[('application', 'WavefrontRuby'), ('http.method', 'GET'), ('service', 'TestRuby')])

        line = tracing_span_to_line_data(span)

        assert line == (
            f'getAllProxyUsers source=localhost traceId={TRACE_ID} spanId={SPAN_ID} '
            f'parent={PARENT_ID} application=WavefrontRuby http.method=GET service=TestRuby '
            '1533529977000 343500'
        )

    def test_parents_and_follows_from_each_get_a_pair(self) -> None:
        """N parents and M follows-from references give N + M well-formed pairs in order."""
        parents = [str(uuid.uuid4()) for _ in range(3)]
        follows_from = [str(uuid.uuid4()) for _ in range(2)]
        span = make_span(parents=parents, follows_from=follows_from)

        pairs = [split_pair(token) for token in tokenize(tracing_span_to_line_data(span))]

        assert [value for key, value in pairs if key == 'parent'] == parents
        assert [value for key, value in pairs if key == 'followsFrom'] == follows_from

    def test_uuid_objects_render_in_canonical_form(self) -> None:
        """UUID objects and upper-case ids render as lower-case canonical text."""
        trace_id = uuid.UUID(TRACE_ID)
        span = make_span(trace_id=trace_id, span_id=SPAN_ID.upper())

        line = tracing_span_to_line_data(span)

        assert f'traceId={TRACE_ID}' in line
        assert f'spanId={SPAN_ID}' in line

    def test_repeated_tag_keys_are_kept(self) -> None:
        """A list of pairs allows the same tag key more than once."""
        span = make_span(tags=[('component', 'db'), ('component', 'cache')])

        line = tracing_span_to_line_data(span)

        assert 'component=db component=cache' in line

    def test_datetime_start_is_converted_to_millis(self) -> None:
        """A datetime start time is rendered as epoch milliseconds."""
        start = datetime(2018, 8, 6, 4, 32, 57, tzinfo=timezone.utc) + timedelta(milliseconds=250)

        tokens = tokenize(tracing_span_to_line_data(make_span(start_millis=start)))

        assert tokens[-2:] == ['1533529977250', '343500']

    @pytest.mark.parametrize('overrides', [
        {'trace_id': 'not-a-uuid'},
        {'span_id': '0313bafe94571'},
        {'span_id': '{0313bafe-9457-11e8-9eb6-529269fb1459}'},
        {'parents': ['bogus']},
        {'parents': PARENT_ID},
        {'follows_from': [123]},
        {'duration_millis': -1},
        {'name': ''},
    ])
    def test_invalid_span_is_rejected(self, overrides) -> None:
        """Malformed identifiers, negative durations and empty names are rejected."""
        with pytest.raises(ValidationError):
            tracing_span_to_line_data(make_span(**overrides))

    def test_zero_duration_is_allowed(self) -> None:
        """A zero duration is valid."""
        assert tracing_span_to_line_data(make_span(duration_millis=0)).endswith(' 1533529977000 0')


class TestSpanLogEncoding:
    """Tests for span log records."""

    def test_span_with_logs_is_tagged(self) -> None:
        """A span carrying logs gets a _spanLogs tag before its timings."""
        span = make_span(span_logs=[SpanLog({'event': 'error'}, timestamp=1533529977000000)])

        tokens = tokenize(tracing_span_to_line_data(span))

        assert tokens[-3] == '_spanLogs=true'

    def test_span_log_record(self) -> None:
        """The span log record is single-line JSON linking logs to the span."""
        span = make_span(span_logs=[
            SpanLog({'event': 'error', 'message': 'timed out\nretrying'}, timestamp=1533529977000000),
            SpanLog({'event': 'retry'}, timestamp=1533529977500000),
        ])
        span_line = tracing_span_to_line_data(span)

        record_line = span_logs_to_line_data(span, span_line)

        assert '\n' not in record_line
        record = json.loads(record_line)
        assert record['traceId'] == TRACE_ID
        assert record['spanId'] == SPAN_ID
        assert record['span'] == span_line
        assert record['logs'] == [
            {'timestamp': 1533529977000000, 'fields': {'event': 'error', 'message': 'timed out\nretrying'}},
            {'timestamp': 1533529977500000, 'fields': {'event': 'retry'}},
        ]

    def test_span_log_defaults_to_current_time(self) -> None:
        """SpanLog timestamps default to now in epoch microseconds."""
        span_log = SpanLog({'event': 'start'})

        now_micros = datetime.now(timezone.utc).timestamp() * 1000000
        assert abs(span_log.timestamp - now_micros) < 60 * 1000000
