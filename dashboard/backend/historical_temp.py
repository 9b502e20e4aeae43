"""Yearly mean temperature (°F) from the Open-Meteo archive."""
from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging

import pandas as pd
import requests

from dashboard.backend import config

log = logging.getLogger('pipeline.weather.history')

ARCHIVE_START = '1940-01-01'
ARCHIVE_LAG_DAYS = 5  # archive updates trail real time


class ArchiveError(Exception):
    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


def full_range(today: Optional[Callable[[], date]] = None) -> tuple[str, str]:
    d = (today or date.today)()
    return ARCHIVE_START, (d - timedelta(days=ARCHIVE_LAG_DAYS)).isoformat()


def yearly_averages(dates: List[str], temps: List[Any]) -> List[Dict[str, Any]]:
    """Mean of the numeric daily values per calendar year, rounded to 0.1."""
    df = pd.DataFrame({'date': dates, 'temp': temps})
    df['temp'] = pd.to_numeric(df['temp'], errors='coerce')
    df = df.dropna(subset=['temp'])
    if df.empty:
        return []
    df['year'] = df['date'].astype(str).str.slice(0, 4).astype(int)
    means = df.groupby('year')['temp'].mean().round(1).sort_index()
    return [{'year': int(y), 'avg': float(v)} for y, v in means.items()]


def fetch_yearly_temperatures(lat: float, lon: float, session: Any = requests,
                              today: Optional[Callable[[], date]] = None,
                              timeout: float = config.HTTP_TIMEOUT_SECONDS) -> Dict[str, Any]:
    start, end = full_range(today)
    params = {
        'latitude': str(lat),
        'longitude': str(lon),
        'start_date': start,
        'end_date': end,
        'daily': 'temperature_2m_mean',
        'temperature_unit': 'fahrenheit',
        'timezone': 'auto',
    }
    log.info('[ARCHIVE] yearly temps lat=%s lon=%s %s..%s', lat, lon, start, end)
    resp = session.get(config.OPENMETEO_ARCHIVE_URL, params=params, timeout=timeout)
    try:
        data = resp.json()
    except ValueError:
        data = None
    if resp.status_code != 200 or not isinstance(data, dict) or data.get('error'):
        reason = data.get('reason') if isinstance(data, dict) else None
        raise ArchiveError(reason or 'archive API error', 502)
    daily = data.get('daily') or {}
    temps = daily.get('temperature_2m_mean')
    dates = daily.get('time')
    if not isinstance(temps, list) or not isinstance(dates, list):
        raise ArchiveError('no daily series returned', 404)
    return {
        'start': start,
        'end': end,
        'lat': lat,
        'long': lon,
        'data': yearly_averages(dates, temps),
    }
