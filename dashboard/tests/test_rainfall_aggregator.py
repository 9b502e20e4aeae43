import json
import math
import threading

import pytest
import requests

from dashboard.backend.rainfall import RainfallAggregator


def _frames(gen):
    return [json.loads(b.decode('utf-8')) for b in gen]


def _years(frames):
    return [int(f['year']) for f in frames if 'count' in f]


def test_two_station_duplicate_date_counts_once(make_aggregator, upstream):
    upstream.page(2020, [
        {'date': '2020-01-01', 'value': 5},
        {'date': '2020-01-01', 'value': 0.5},
    ], count=2)
    upstream.page(2020, [], offset=1001)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert {'year': '2020', 'count': 1} in frames


def test_same_date_from_many_stations_adds_one(make_aggregator, upstream):
    upstream.page(2015, [
        {'date': '2015-03-01', 'value': 2.0},
        {'date': '2015-03-01', 'value': 3.5},
        {'date': '2015-03-01', 'value': 1.2},
        {'date': '2015-03-02', 'value': 4.0},
    ])
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert {'year': '2015', 'count': 2} in frames


def test_values_at_or_below_threshold_never_count(make_aggregator, upstream):
    upstream.page(2001, [
        {'date': '2001-01-01', 'value': 1},
        {'date': '2001-01-02', 'value': 1.0},
        {'date': '2001-01-03', 'value': 0.99},
        {'date': '2001-01-04', 'value': None},
        {'date': '2001-01-05', 'value': '5'},
        {'date': '2001-01-06', 'value': 1.01},
    ])
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert {'year': '2001', 'count': 1} in frames


def test_window_is_last_26_full_years_ascending(make_aggregator):
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    years = _years(frames)
    assert years == list(range(1999, 2025))
    assert len(years) == len(set(years)) == 26
    assert all('error' not in f for f in frames)


def test_year_is_a_string_on_the_wire(make_aggregator):
    first = next(make_aggregator().iter_frames(40.7, -74.0))
    assert first.endswith(b'\n')
    obj = json.loads(first)
    assert obj == {'year': '1999', 'count': 0}


def test_pagination_requests_ceil_total_over_page_size(make_aggregator, upstream):
    total = 2500
    dates = [f'2010-d{i % 300}' for i in range(total)]
    upstream.page(2010, [{'date': d, 'value': 3} for d in dates[:1000]], offset=1, count=total)
    upstream.page(2010, [{'date': d, 'value': 3} for d in dates[1000:2000]], offset=1001, count=total)
    upstream.page(2010, [{'date': d, 'value': 3} for d in dates[2000:]], offset=2001, count=total)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert len(upstream.year_calls(2010)) == math.ceil(total / 1000)
    assert [c[1] for c in upstream.year_calls(2010)] == [1, 1001, 2001]
    assert {'year': '2010', 'count': 300} in frames


def test_total_is_read_from_first_page_only(make_aggregator, upstream):
    upstream.page(2012, [{'date': f'2012-a{i}', 'value': 2} for i in range(1000)], offset=1, count=1500)
    # a later page reporting a larger total must not extend paging
    upstream.page(2012, [{'date': f'2012-b{i}', 'value': 2} for i in range(500)], offset=1001, count=9000)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert len(upstream.year_calls(2012)) == 2
    assert {'year': '2012', 'count': 1500} in frames


def test_empty_page_stops_paging_early(make_aggregator, upstream):
    upstream.page(2003, [{'date': '2003-05-05', 'value': 9}], offset=1, count=5000)
    upstream.page(2003, [], offset=1001, count=5000)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert len(upstream.year_calls(2003)) == 2
    assert {'year': '2003', 'count': 1} in frames


def test_first_page_failure_omits_only_that_year(make_aggregator, upstream):
    upstream.fail(2010)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    years = _years(frames)
    assert 2010 not in years
    assert 2009 in years and 2011 in years
    assert years == [y for y in range(1999, 2025) if y != 2010]
    assert all('error' not in f for f in frames)


@pytest.mark.parametrize('body', [
    ['unexpected'],
    'unexpected',
    {'results': 'unexpected'},
    {'results': [{'date': '2010-01-01', 'value': 5}], 'metadata': {'resultset': {'count': 'many'}}},
    {'results': [{'date': '2010-01-01', 'value': 5}], 'metadata': ['resultset']},
])
def test_malformed_page_body_omits_only_that_year(make_aggregator, upstream, fake_response, body):
    upstream.pages[(2010, 1)] = fake_response(200, body)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert _years(frames) == [y for y in range(1999, 2025) if y != 2010]
    assert all('error' not in f for f in frames)


def test_non_dict_records_are_skipped(make_aggregator, upstream):
    upstream.page(2010, ['junk', None, {'date': '2010-03-01', 'value': 2.5}], count=3)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert {'year': '2010', 'count': 1} in frames
    assert len(frames) == 26


def test_first_page_failure_with_error_policy_emits_marker(make_aggregator, upstream):
    upstream.fail(2010)
    frames = _frames(make_aggregator(skipped_year_policy='error').iter_frames(40.7, -74.0))
    markers = [f for f in frames if 'error' in f]
    assert len(markers) == 1
    assert markers[0]['year'] == '2010'
    # marker sits in the year's slot
    idx = frames.index(markers[0])
    assert frames[idx - 1]['year'] == '2009'
    assert frames[idx + 1]['year'] == '2011'


def test_later_page_failure_keeps_partial_count(make_aggregator, upstream):
    upstream.page(2018, [{'date': f'2018-{i}', 'value': 2} for i in range(1000)], offset=1, count=2000)
    upstream.fail(2018, offset=1001, status=503)
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert {'year': '2018', 'count': 1000} in frames


def test_transport_error_on_page_is_contained(make_aggregator, upstream):
    upstream.pages[(2007, 1)] = requests.ConnectionError('reset by peer')
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    years = _years(frames)
    assert 2007 not in years
    assert len(years) == 25


def test_rate_limited_page_is_retried(make_aggregator, upstream, sleeps, fake_response):
    ok = fake_response(200, {'results': [{'date': '2006-07-07', 'value': 2}], 'metadata': {'resultset': {'count': 1}}})
    upstream.pages[(2006, 1)] = [fake_response(429, {}), ok]
    frames = _frames(make_aggregator(retry_delays=(1,)).iter_frames(40.7, -74.0))
    assert {'year': '2006', 'count': 1} in frames
    assert len(upstream.year_calls(2006)) == 2
    assert 1 in sleeps


def test_rate_limit_that_never_clears_skips_year(make_aggregator, upstream, fake_response):
    upstream.pages[(2006, 1)] = fake_response(429, {})
    frames = _frames(make_aggregator(retry_delays=(1, 2)).iter_frames(40.7, -74.0))
    assert 2006 not in _years(frames)
    assert len(upstream.year_calls(2006)) == 3


def test_pacing_sleeps_between_years_not_pages(make_aggregator, upstream, sleeps):
    upstream.page(2005, [{'date': f'2005-{i}', 'value': 2} for i in range(1000)], offset=1, count=1001)
    upstream.page(2005, [{'date': '2005-x', 'value': 2}], offset=1001, count=1001)
    list(make_aggregator().iter_frames(40.7, -74.0))
    assert sleeps == [0.2] * 25


def test_unresolvable_location_yields_single_error_frame(make_aggregator, upstream):
    upstream.fips = None
    frames = _frames(make_aggregator().iter_frames(0.0, 0.0))
    assert frames == [{'error': 'Could not find a valid county for this location.'}]
    assert upstream.calls == []


def test_location_service_failure_yields_single_error_frame(make_aggregator, upstream):
    upstream.fcc_status = 500
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert frames == [{'error': 'Failed to fetch location data'}]


def test_unexpected_exception_ends_stream_with_error(make_aggregator, upstream):
    upstream.pages[(2004, 1)] = RuntimeError('boom')
    frames = _frames(make_aggregator().iter_frames(40.7, -74.0))
    assert _years(frames) == list(range(1999, 2004))
    assert frames[-1] == {'error': 'boom'}


def test_cancel_stops_between_years_without_error(make_aggregator):
    cancel = threading.Event()
    out = []
    for b in make_aggregator().iter_frames(40.7, -74.0, cancel=cancel):
        out.append(json.loads(b))
        cancel.set()
    assert out == [{'year': '1999', 'count': 0}]


def test_closing_generator_stops_upstream_calls(make_aggregator, upstream):
    gen = make_aggregator().iter_frames(40.7, -74.0)
    next(gen)
    gen.close()
    assert {c[0] for c in upstream.calls} == {1999}


def test_token_header_is_sent(make_aggregator, upstream):
    list(make_aggregator(token='abc').iter_frames(40.7, -74.0))
    assert all(c[2] == {'token': 'abc'} for c in upstream.calls)


def test_unknown_skipped_year_policy_rejected(upstream):
    with pytest.raises(ValueError):
        RainfallAggregator(session=upstream, skipped_year_policy='retry')
