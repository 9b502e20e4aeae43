"""Proxy to the external temperature-forecast (GRU) service."""
from __future__ import annotations
from typing import Any, Dict, Tuple
import logging

import requests

from dashboard.backend import config

log = logging.getLogger('pipeline.forecast')

MANUAL_FIELDS = ('lat', 'lon', 'historical_years', 'historical_temps')


def choose_endpoint(body: Dict[str, Any]) -> str | None:
    if all(body.get(k) for k in MANUAL_FIELDS):
        return '/predict/manual'
    if body.get('city') and body.get('state'):
        return '/predict/automatic'
    return None


def forward_prediction(body: Dict[str, Any], session: Any = requests,
                       base_url: str | None = None,
                       timeout: float = config.HTTP_TIMEOUT_SECONDS) -> Tuple[Dict[str, Any], int]:
    """Return (json payload, status) for the client."""
    endpoint = choose_endpoint(body)
    if endpoint is None:
        return {
            'error': 'Invalid request body. Must provide either {city, state} or '
                     '{city, state, lat, lon, historical_years, historical_temps}',
        }, 400
    base = (base_url or config.ML_API_BASE_URL).rstrip('/')
    url = f'{base}{endpoint}'
    log.info('[ML] forwarding request to %s', url)
    try:
        resp = session.post(url, json=body, headers={'accept': 'application/json'}, timeout=timeout)
    except requests.ConnectionError:
        log.error('[ML] service unreachable at %s', base)
        return {'error': f'Could not connect to the ML server. Is it running at {base}?'}, 503
    except requests.RequestException as e:
        log.error('[ML] request failed: %s', e)
        return {'error': 'An internal server error occurred', 'details': str(e)}, 500
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if resp.status_code != 200:
        log.error('[ML] HTTP %s: %s', resp.status_code, data)
        detail = data.get('detail') if isinstance(data, dict) else None
        return {'error': detail or 'An error occurred from the ML service'}, resp.status_code
    return data, 200
