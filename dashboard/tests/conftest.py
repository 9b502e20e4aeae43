from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from dashboard.backend import config
from dashboard.backend.rainfall import RainfallAggregator

TODAY = date(2025, 6, 1)  # window 1999..2024


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, chunks: Optional[List[bytes]] = None, reason: str = ''):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self._chunks = list(chunks or [])
        self.reads = 0
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON body')
        return self._payload

    def iter_content(self, chunk_size: int = 1):
        for c in self._chunks:
            self.reads += 1
            yield c

    def close(self) -> None:
        self.closed = True


def records_page(results, count=None) -> Dict[str, Any]:
    return {
        'results': list(results),
        'metadata': {'resultset': {'count': len(results) if count is None else count}},
    }


class FakeUpstream:
    """requests-like session serving the FCC lookup and NOAA CDO pages."""

    def __init__(self, fips: Optional[str] = '36061', fcc_status: int = 200):
        self.fips = fips
        self.fcc_status = fcc_status
        self.pages: Dict[tuple, Any] = {}
        self.calls: List[tuple] = []
        self.closed = False

    def page(self, year: int, results, offset: int = 1, count=None) -> None:
        self.pages[(year, offset)] = FakeResponse(200, records_page(results, count))

    def fail(self, year: int, offset: int = 1, status: int = 500) -> None:
        self.pages[(year, offset)] = FakeResponse(status, {'status': status}, reason='Server Error')

    def year_calls(self, year: int) -> List[tuple]:
        return [c for c in self.calls if c[0] == year]

    def get(self, url, params=None, headers=None, timeout=None, stream=False):
        params = dict(params or {})
        if url == config.FCC_BLOCK_URL:
            county = {'FIPS': self.fips} if self.fips else {}
            return FakeResponse(self.fcc_status, {'County': county})
        if url == config.NOAA_RECORDS_URL:
            year = int(params['startdate'][:4])
            offset = int(params['offset'])
            self.calls.append((year, offset, headers))
            resp = self.pages.get((year, offset))
            if isinstance(resp, list):
                resp = resp.pop(0) if len(resp) > 1 else resp[0]
            if isinstance(resp, Exception):
                raise resp
            return resp if resp is not None else FakeResponse(200, records_page([]))
        raise AssertionError(f'unexpected url {url}')

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_aggregator(upstream, sleeps):
    def _make(**kwargs) -> RainfallAggregator:
        opts = dict(
            session=upstream,
            token='test-token',
            sleep=sleeps.append,
            today=lambda: TODAY,
            retry_delays=(),
            skipped_year_policy='omit',
        )
        opts.update(kwargs)
        return RainfallAggregator(**opts)
    return _make


@pytest.fixture
def fake_response():
    return FakeResponse
