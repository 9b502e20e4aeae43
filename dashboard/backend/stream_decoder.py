"""Client side of the rainfall stream.

The body of `/api/extreme` arrives in arbitrary chunks: a frame may be split
across several chunks (even inside a multi-byte character) and one chunk may
hold several frames. `StreamDecoder` keeps the undecoded tail between chunks
and only parses complete lines. A trailing fragment without a newline is
dropped when the stream ends.
"""
from __future__ import annotations
import codecs
import logging
import threading
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import requests

from dashboard.backend import config
from dashboard.backend.framing import ErrorFrame, YearCount, parse_frame

log = logging.getLogger('pipeline.decoder')

ERROR_POLICIES = ('raise', 'log')


class RainfallStreamError(Exception):
    """The stream could not be opened (non-200 start or transport failure)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StreamErrorFrame(Exception):
    """The producer sent an error frame."""

    def __init__(self, message: str, year: Optional[int] = None):
        super().__init__(message)
        self.year = year


class StreamDecoder:
    def __init__(self, on_error: str = 'raise'):
        if on_error not in ERROR_POLICIES:
            raise ValueError(f"Unsupported error policy: {on_error}")
        self.on_error = on_error
        self.pending = ''
        self.errors: List[str] = []
        self._utf8 = codecs.getincrementaldecoder('utf-8')(errors='replace')

    def feed(self, chunk: bytes) -> Iterator[YearCount]:
        """Consume one chunk and yield every YearCount completed by it."""
        self.pending += self._utf8.decode(chunk)
        *lines, self.pending = self.pending.split('\n')
        for line in lines:
            if not line.strip():
                continue
            frame = parse_frame(line)
            if frame is None:
                log.debug('[DECODE] dropped malformed line: %r', line[:200])
                continue
            if isinstance(frame, ErrorFrame):
                self.errors.append(frame.error)
                if self.on_error == 'raise':
                    raise StreamErrorFrame(frame.error, year=frame.year)
                log.warning('[DECODE] error frame (continuing): %s', frame.error)
                continue
            yield frame

    def finish(self) -> None:
        if self.pending.strip():
            log.debug('[DECODE] discarding unterminated tail: %r', self.pending[:200])
        self.pending = ''
        self._utf8.reset()

    def decode(self, chunks: Iterable[bytes], cancel: Optional[threading.Event] = None) -> Iterator[YearCount]:
        source = iter(chunks)
        try:
            while True:
                if cancel is not None and cancel.is_set():
                    log.info('[DECODE] cancelled; stop reading')
                    return
                chunk = next(source, None)
                if chunk is None:
                    return
                if chunk:
                    yield from self.feed(chunk)
        finally:
            self.finish()


def collapse_by_year(items: Iterable[YearCount]) -> List[YearCount]:
    """Last value per year wins; ascending by year."""
    by_year: Dict[int, int] = {}
    for it in items:
        by_year[it.year] = it.count
    return [YearCount(year=y, count=by_year[y]) for y in sorted(by_year)]


class RainfallSeries:
    """Growing, year-ordered collection fed while the stream is still open."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[int, int] = {}
        self.done = False
        self.cancelled = False
        self.error: Optional[str] = None

    def add(self, item: YearCount) -> None:
        with self._lock:
            self._counts[item.year] = item.count

    def points(self) -> List[YearCount]:
        with self._lock:
            return [YearCount(year=y, count=self._counts[y]) for y in sorted(self._counts)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)

    def finish(self, error: Optional[str] = None, cancelled: bool = False) -> None:
        self.error = error
        self.cancelled = cancelled
        self.done = True

    @property
    def partial(self) -> bool:
        return self.error is not None and len(self) > 0


def _error_message(resp: Any) -> Optional[str]:
    try:
        data = resp.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get('error'), str):
        return data['error']
    return None


def _close_on_cancel(cancel: threading.Event, finished: threading.Event, resp: Any, poll: float = 0.05) -> None:
    # a blocked iter_content read only returns once the socket is closed
    while not finished.is_set():
        if cancel.wait(poll):
            if not finished.is_set():
                log.info('[DECODE] cancelled; closing response')
                resp.close()
            return


def stream_rainfall(
    base_url: str,
    lat: float,
    lon: float,
    session: Any = None,
    cancel: Optional[threading.Event] = None,
    on_error: str = 'raise',
    chunk_size: int = 1024,
    timeout: float = config.HTTP_TIMEOUT_SECONDS,
) -> Iterator[YearCount]:
    """Yield YearCount items from a running server as they arrive.

    Closing the generator or setting `cancel` closes the HTTP response, which
    tears the connection down and stops the producer. With `cancel` set from
    another thread, a read that is already blocked is interrupted as well.
    """
    http = session if session is not None else requests
    url = f"{base_url.rstrip('/')}/api/extreme"
    try:
        resp = http.get(url, params={'lat': lat, 'lon': lon}, stream=True, timeout=timeout)
    except requests.RequestException as e:
        raise RainfallStreamError(f'Unable to reach rainfall stream: {e}') from e
    finished = threading.Event()
    try:
        if resp.status_code != 200:
            message = _error_message(resp) or 'Unable to load rainfall history.'
            raise RainfallStreamError(message, status=resp.status_code)
        if cancel is not None:
            threading.Thread(target=_close_on_cancel, args=(cancel, finished, resp), daemon=True).start()
        decoder = StreamDecoder(on_error=on_error)
        try:
            yield from decoder.decode(resp.iter_content(chunk_size=chunk_size), cancel=cancel)
        except Exception as e:
            if cancel is None or not cancel.is_set():
                raise
            # the read failed because the response was closed under it
            log.info('[DECODE] read interrupted by cancel: %s', e.__class__.__name__)
    finally:
        finished.set()
        resp.close()


def load_rainfall(
    base_url: str,
    lat: float,
    lon: float,
    series: Optional[RainfallSeries] = None,
    on_update: Optional[Callable[[RainfallSeries], None]] = None,
    cancel: Optional[threading.Event] = None,
    **kwargs: Any,
) -> RainfallSeries:
    """Fill a RainfallSeries progressively; failures end up in `series.error`."""
    series = series if series is not None else RainfallSeries()
    try:
        for item in stream_rainfall(base_url, lat, lon, cancel=cancel, **kwargs):
            series.add(item)
            if on_update is not None:
                on_update(series)
    except (StreamErrorFrame, RainfallStreamError) as e:
        log.warning('[DECODE] rainfall stream failed after %d years: %s', len(series), e)
        series.finish(error=str(e))
        return series
    except requests.RequestException as e:
        log.warning('[DECODE] rainfall transport error after %d years: %s', len(series), e)
        series.finish(error=str(e))
        return series
    series.finish(cancelled=bool(cancel is not None and cancel.is_set()))
    return series


def fetch_rainfall_counts(base_url: str, lat: float, lon: float, **kwargs: Any) -> List[YearCount]:
    """Read the whole stream and return the deduplicated, ascending series.

    Raises StreamErrorFrame / RainfallStreamError when the stream fails.
    """
    return collapse_by_year(stream_rainfall(base_url, lat, lon, **kwargs))
