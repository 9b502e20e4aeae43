"""Rainy-day counts per year, streamed as newline-delimited JSON.

For a coordinate pair:
- resolve the county FIPS code (FCC)
- walk the last 26 fully elapsed years, paging through NOAA CDO GHCND PRCP records
- count distinct dates with precipitation above the threshold
- emit one frame per year, pausing between years to stay under the CDO rate limit

A failed page only degrades its own year. Location failures and unexpected
errors end the stream with a single error frame.
"""
from __future__ import annotations
import logging
import threading
import time
from datetime import date
from typing import Any, Callable, Iterator, Optional, Sequence, Set, Tuple

import requests

from dashboard.backend import config
from dashboard.backend.framing import YearCount, encode_error, encode_year_count
from dashboard.backend.geocode import resolve_county_fips

log = logging.getLogger('pipeline.rainfall')

SKIPPED_YEAR_POLICIES = ('omit', 'error')


class RecordsPageError(Exception):
    pass


class RainfallAggregator:
    def __init__(
        self,
        session: Any = None,
        token: Optional[str] = None,
        page_size: int = config.RAINFALL_PAGE_SIZE,
        lookback_years: int = config.RAINFALL_LOOKBACK_YEARS,
        threshold: float = config.RAINFALL_THRESHOLD,
        pacing_seconds: float = config.RAINFALL_PACING_SECONDS,
        skipped_year_policy: str = config.RAINFALL_SKIPPED_YEAR_POLICY,
        retry_delays: Sequence[float] = config.RETRY_DELAYS_SECONDS,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[Callable[[], date]] = None,
    ):
        if skipped_year_policy not in SKIPPED_YEAR_POLICIES:
            raise ValueError(f"Unsupported skipped-year policy: {skipped_year_policy}")
        self._owns_session = session is None
        self.session = requests.Session() if session is None else session
        self.token = token if token is not None else config.NOAA_API_TOKEN
        self.page_size = int(page_size)
        self.lookback_years = int(lookback_years)
        self.threshold = float(threshold)
        self.pacing_seconds = float(pacing_seconds)
        self.skipped_year_policy = skipped_year_policy
        self.retry_delays = tuple(retry_delays)
        self.timeout = timeout
        self.sleep = sleep
        self._today = today or date.today

    def year_window(self) -> Tuple[int, int]:
        # Current year excluded: upstream data lags real time
        end_year = self._today().year - 1
        return end_year - self.lookback_years, end_year

    def _fetch_page(self, fips: str, year: int, offset: int) -> dict:
        params = {
            'datasetid': 'GHCND',
            'locationid': f'FIPS:{fips}',
            'startdate': f'{year}-01-01',
            'enddate': f'{year}-12-31',
            'datatypeid': 'PRCP',
            'units': 'standard',
            'limit': self.page_size,
            'offset': offset,
        }
        headers = {'token': self.token}
        resp = None
        for attempt in range(len(self.retry_delays) + 1):
            try:
                resp = self.session.get(config.NOAA_RECORDS_URL, params=params, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise RecordsPageError(f'network error: {e}') from e
            if resp.status_code != 429:
                break
            if attempt < len(self.retry_delays):
                delay = self.retry_delays[attempt]
                log.warning('[NOAA] 429; backoff %ss (attempt %d) year=%d offset=%d', delay, attempt + 1, year, offset)
                self.sleep(delay)
        if resp.status_code != 200:
            raise RecordsPageError(f'HTTP {resp.status_code} {getattr(resp, "reason", "") or ""}'.strip())
        try:
            page = resp.json()
        except ValueError as e:
            raise RecordsPageError('invalid JSON body') from e
        return self._check_page(page)

    def _check_page(self, page: Any) -> dict:
        # an empty 200 body is the upstream's "no records" answer
        if not page:
            return {'results': [], 'metadata': {'resultset': {'count': 0}}}
        if not isinstance(page, dict):
            raise RecordsPageError(f'unexpected page body: {type(page).__name__}')
        results = page.get('results') or []
        if not isinstance(results, list):
            raise RecordsPageError(f'unexpected results field: {type(results).__name__}')
        metadata = page.get('metadata') or {}
        if not isinstance(metadata, dict):
            raise RecordsPageError(f'unexpected metadata field: {type(metadata).__name__}')
        resultset = metadata.get('resultset') or {}
        if not isinstance(resultset, dict):
            raise RecordsPageError(f'unexpected resultset field: {type(resultset).__name__}')
        count = resultset.get('count') or 0
        if isinstance(count, bool) or not isinstance(count, int):
            raise RecordsPageError(f'unexpected resultset count: {count!r}')
        return {'results': results, 'metadata': {'resultset': {'count': count}}}

    def _qualifies(self, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return value > self.threshold

    def count_year(self, fips: str, year: int, cancel: Optional[threading.Event] = None) -> Optional[int]:
        """Distinct qualifying dates for `year`, or None when no page could be fetched."""
        dates: Set[str] = set()
        fetched = 0
        expected_total: Optional[int] = None
        offset = 1
        pages_ok = 0
        while True:
            if cancel is not None and cancel.is_set():
                return None
            try:
                page = self._fetch_page(fips, year, offset)
            except RecordsPageError as e:
                log.error('[NOAA] year=%d offset=%d failed: %s', year, offset, e)
                break
            pages_ok += 1
            results = page['results']
            if expected_total is None:
                expected_total = page['metadata']['resultset']['count']
            if not results:
                break
            for item in results:
                if not isinstance(item, dict):
                    continue
                d = item.get('date')
                if d and self._qualifies(item.get('value')):
                    dates.add(d)
            fetched += len(results)
            offset += self.page_size
            if fetched >= expected_total:
                break
        if pages_ok == 0:
            return None
        log.info('[NOAA] year=%d pages=%d records=%d/%d rainy_days=%d', year, pages_ok, fetched, expected_total or 0, len(dates))
        return len(dates)

    def iter_frames(self, lat: float, lon: float, cancel: Optional[threading.Event] = None) -> Iterator[bytes]:
        """Yield encoded frames for (lat, lon). Always finishes through the close log."""
        log.info('[STREAM] rainfall start lat=%s lon=%s', lat, lon)
        frames = 0
        try:
            fips = resolve_county_fips(lat, lon, session=self.session, timeout=self.timeout)
            start_year, end_year = self.year_window()
            for year in range(start_year, end_year + 1):
                if cancel is not None and cancel.is_set():
                    log.info('[STREAM] cancelled before year=%d', year)
                    return
                count = self.count_year(fips, year, cancel=cancel)
                if cancel is not None and cancel.is_set():
                    log.info('[STREAM] cancelled during year=%d', year)
                    return
                if count is None:
                    log.warning('[STREAM] year=%d skipped; no page succeeded', year)
                    if self.skipped_year_policy == 'error':
                        frames += 1
                        yield encode_error(f'No rainfall records could be fetched for {year}', year=year)
                else:
                    frames += 1
                    yield encode_year_count(YearCount(year=year, count=count))
                if year < end_year:
                    self.sleep(self.pacing_seconds)
        except GeneratorExit:
            log.info('[STREAM] consumer disconnected lat=%s lon=%s', lat, lon)
            raise
        except Exception as e:
            log.error('[STREAM] rainfall failed: %s', e)
            frames += 1
            yield encode_error(str(e) or e.__class__.__name__)
        finally:
            if self._owns_session:
                self.session.close()
            log.info('[STREAM] rainfall closed lat=%s lon=%s frames=%d', lat, lon, frames)


def aggregate(lat: float, lon: float, cancel: Optional[threading.Event] = None, **kwargs: Any) -> Iterator[bytes]:
    return RainfallAggregator(**kwargs).iter_frames(lat, lon, cancel=cancel)
