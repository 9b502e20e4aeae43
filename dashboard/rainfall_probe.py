"""
Rainfall stream probe against a running backend.
- Streams /api/extreme for one location and logs each year as it arrives.
- Optional cancellation after N seconds (connection is torn down, no error).
- Reads the result through the in-process cache a second time to show the hit.
- Prints rainfall and temperature quick facts.
Usage:
    python -m dashboard.rainfall_probe --lat 40.71 --lon -74.01 [--base-url http://127.0.0.1:5000]
"""
import argparse
import logging
import threading
import time

import requests

from dashboard.backend.facts import compute_rainfall_facts, compute_temperature_facts, yearly_temps_from_json
from dashboard.backend.rainfall_cache import RainfallCache
from dashboard.backend.stream_decoder import RainfallSeries, load_rainfall

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
log = logging.getLogger('probe')


def stream_once(base_url: str, lat: float, lon: float, cancel_after: float, on_error: str) -> RainfallSeries:
    cancel = threading.Event()
    timer = None
    if cancel_after > 0:
        timer = threading.Timer(cancel_after, cancel.set)
        timer.daemon = True
        timer.start()
    t0 = time.time()

    def _progress(series: RainfallSeries) -> None:
        last = series.points()[-1]
        log.info('[STREAM] +%.1fs years=%d latest=%d:%d', time.time() - t0, len(series), last.year, last.count)

    try:
        return load_rainfall(base_url, lat, lon, on_update=_progress, cancel=cancel, on_error=on_error)
    finally:
        if timer is not None:
            timer.cancel()


def temperature_facts(base_url: str, lat: float, lon: float):
    resp = requests.get(f"{base_url.rstrip('/')}/api/historical_temp", params={'lat': lat, 'long': lon}, timeout=120)
    data = resp.json()
    if resp.status_code != 200:
        log.warning('[FACTS] temperature history unavailable: %s', data.get('error'))
        return None
    return compute_temperature_facts(yearly_temps_from_json(data.get('data') or []))


def main():
    ap = argparse.ArgumentParser(description='Probe the rainfall stream')
    ap.add_argument('--lat', type=float, required=True)
    ap.add_argument('--lon', type=float, required=True)
    ap.add_argument('--base-url', default='http://127.0.0.1:5000')
    ap.add_argument('--cancel-after', type=float, default=0.0, help='seconds; 0 disables')
    ap.add_argument('--on-error', choices=('raise', 'log'), default='raise')
    args = ap.parse_args()

    cache = RainfallCache()

    def _loader(lat: float, lon: float) -> RainfallSeries:
        return stream_once(args.base_url, lat, lon, args.cancel_after, args.on_error)

    entry = cache.get_or_load(args.lat, args.lon, _loader)
    if entry.error:
        log.warning('[RESULT] error=%s years=%d', entry.error, len(entry.points))
    else:
        log.info('[RESULT] years=%d', len(entry.points))
    # second read is served from memory
    cache.get_or_load(args.lat, args.lon, _loader)

    rf = compute_rainfall_facts(entry.points)
    if rf.average_wet_days is None:
        log.info('[FACTS] rainfall history not available for this location')
    else:
        log.info('[FACTS] avg rainy days=%.1f wettest=%s change/yr=%s', rf.average_wet_days, rf.wettest_year, rf.change_per_year)
    tf = temperature_facts(args.base_url, args.lat, args.lon)
    if tf is not None:
        log.info('[FACTS] temp change/decade=%s warmest=%s coldest=%s', tf.change_per_decade, tf.warmest_year, tf.coldest_year)


if __name__ == '__main__':
    main()
