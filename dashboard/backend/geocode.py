"""Location lookups: coordinates to county FIPS (FCC) and city search (Open-Meteo)."""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import requests

from dashboard.backend import config

log = logging.getLogger('pipeline.geocode')

US_STATE_BY_ABBR = {
    'AL': 'Alabama', 'AK': 'Alaska', 'AZ': 'Arizona', 'AR': 'Arkansas', 'CA': 'California',
    'CO': 'Colorado', 'CT': 'Connecticut', 'DE': 'Delaware', 'FL': 'Florida', 'GA': 'Georgia',
    'HI': 'Hawaii', 'ID': 'Idaho', 'IL': 'Illinois', 'IN': 'Indiana', 'IA': 'Iowa',
    'KS': 'Kansas', 'KY': 'Kentucky', 'LA': 'Louisiana', 'ME': 'Maine', 'MD': 'Maryland',
    'MA': 'Massachusetts', 'MI': 'Michigan', 'MN': 'Minnesota', 'MS': 'Mississippi', 'MO': 'Missouri',
    'MT': 'Montana', 'NE': 'Nebraska', 'NV': 'Nevada', 'NH': 'New Hampshire', 'NJ': 'New Jersey',
    'NM': 'New Mexico', 'NY': 'New York', 'NC': 'North Carolina', 'ND': 'North Dakota', 'OH': 'Ohio',
    'OK': 'Oklahoma', 'OR': 'Oregon', 'PA': 'Pennsylvania', 'RI': 'Rhode Island', 'SC': 'South Carolina',
    'SD': 'South Dakota', 'TN': 'Tennessee', 'TX': 'Texas', 'UT': 'Utah', 'VT': 'Vermont',
    'VA': 'Virginia', 'WA': 'Washington', 'WV': 'West Virginia', 'WI': 'Wisconsin', 'WY': 'Wyoming',
    'DC': 'District of Columbia',
}


class LocationLookupError(Exception):
    pass


class CitySearchError(Exception):
    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


def resolve_county_fips(lat: float, lon: float, session: Any = requests, timeout: float = config.HTTP_TIMEOUT_SECONDS) -> str:
    """Return the county FIPS code containing (lat, lon).

    Raises LocationLookupError when the FCC lookup fails or has no county.
    """
    params = {'latitude': lat, 'longitude': lon, 'format': 'json'}
    resp = session.get(config.FCC_BLOCK_URL, params=params, timeout=timeout)
    if resp.status_code != 200:
        log.warning('[FCC] HTTP %s for lat=%s lon=%s', resp.status_code, lat, lon)
        raise LocationLookupError('Failed to fetch location data')
    data = resp.json() or {}
    fips = (data.get('County') or {}).get('FIPS')
    if not fips:
        raise LocationLookupError('Could not find a valid county for this location.')
    log.info('[FCC] lat=%s lon=%s -> FIPS:%s', lat, lon, fips)
    return str(fips)


def _choose_result(results: List[Dict[str, Any]], state: Optional[str]) -> tuple[Optional[Dict[str, Any]], bool]:
    chosen = results[0] if results else None
    full = US_STATE_BY_ABBR.get(state.upper()) if state else None
    if not full:
        return chosen, False
    for r in results:
        admin1 = r.get('admin1') if r else None
        if r and r.get('country_code') == 'US' and isinstance(admin1, str) and admin1.lower() == full.lower():
            return r, True
    for r in results:
        if r and r.get('country_code') == 'US':
            return r, False
    return chosen, False


def search_city(city: str, state: Optional[str] = None, session: Any = requests,
                timeout: float = config.HTTP_TIMEOUT_SECONDS) -> Dict[str, Any]:
    """Search a US city, preferring the match in `state` (two-letter code) when given."""
    params = {'name': city, 'count': '90', 'countryCode': 'US'}
    resp = session.get(config.OPENMETEO_GEOCODING_URL, params=params, timeout=timeout)
    if resp.status_code != 200:
        raise CitySearchError('geocoding error', resp.status_code)
    data = resp.json() or {}
    results = data.get('results') if isinstance(data.get('results'), list) else []
    if not results:
        raise CitySearchError('no results found', 404)
    chosen, matched = _choose_result(results, state)
    if not chosen:
        raise CitySearchError('no results found', 404)
    resolved = ', '.join(str(p) for p in (chosen.get('name'), chosen.get('admin1'), chosen.get('country')) if p)
    log.info('[GEOCODE] %s/%s -> %s (exact=%s)', city, state, resolved, matched)
    return {
        'lat': chosen.get('latitude'),
        'long': chosen.get('longitude'),
        'resolved': resolved,
        'isClosestMatch': not matched,
        'name': chosen.get('name'),
        'admin1': chosen.get('admin1'),
    }
