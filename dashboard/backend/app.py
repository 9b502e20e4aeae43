from flask import Flask, jsonify, request, Response
from typing import Any, Optional, Tuple
import logging
import os

from dashboard.backend.rainfall import RainfallAggregator
from dashboard.backend.geocode import search_city, CitySearchError
from dashboard.backend.historical_temp import fetch_yearly_temperatures, ArchiveError
from dashboard.backend.forecast import forward_prediction

app = Flask(__name__)

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
log = logging.getLogger('pipeline')


def _make_aggregator() -> RainfallAggregator:
    # one aggregator per request; nothing is shared across streams
    return RainfallAggregator()


def _coords(lat_name: str, lon_name: str) -> Tuple[Optional[float], Optional[float], Optional[str]]:
    lat_raw = request.args.get(lat_name)
    lon_raw = request.args.get(lon_name)
    if not lat_raw or not lon_raw:
        return None, None, "Latitude and longitude query parameters are required."
    try:
        lat = float(lat_raw)
        lon = float(lon_raw)
    except ValueError:
        return None, None, "Latitude and longitude must be numbers."
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None, None, "Latitude and longitude are out of range."
    return lat, lon, None


@app.route('/api/extreme')
def api_extreme():
    """Stream yearly rainy-day counts as newline-delimited JSON.

    Query params:
      - lat, lon: decimal degrees (required)
    """
    lat, lon, err = _coords('lat', 'lon')
    if err:
        return jsonify({"error": err}), 400
    aggregator = _make_aggregator()
    log.info('[STREAM] extreme request lat=%s lon=%s', lat, lon)
    headers = {
        'Cache-Control': 'no-cache',
        'Content-Type': 'application/octet-stream; charset=utf-8',
    }
    return Response(aggregator.iter_frames(lat, lon), headers=headers)


@app.route('/api/historical_temp')
def api_historical_temp():
    lat, lon, err = _coords('lat', 'long')
    if err:
        return jsonify({"error": "lat and long are required"}), 400
    try:
        return jsonify(fetch_yearly_temperatures(lat, lon))
    except ArchiveError as e:
        return jsonify({"error": str(e)}), e.status
    except Exception as e:
        log.error('historical_temp route failed: %s', e)
        return jsonify({"error": "unexpected server error"}), 500


@app.route('/api/weather')
def api_weather():
    """City search; `state` is an optional two-letter code used to pick the match."""
    city = request.args.get('city')
    state = request.args.get('state')
    if not city:
        return jsonify({"error": "city is required"}), 400
    try:
        return jsonify(search_city(city, state))
    except CitySearchError as e:
        return jsonify({"error": str(e)}), e.status
    except Exception as e:
        log.error('Server error: %s', e)
        return jsonify({"error": "unexpected server error"}), 500


@app.route('/api/gru', methods=['POST'])
def api_gru():
    body: Any = request.get_json(silent=True)
    if not isinstance(body, dict):
        body = {}
    payload, status = forward_prediction(body)
    return jsonify(payload), status


if __name__ == '__main__':
    app.run(host='127.0.0.1', port=int(os.environ.get('PORT', '5000')), threaded=True)
