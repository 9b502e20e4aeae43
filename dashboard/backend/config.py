"""Runtime settings read from the environment once at import."""
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


NOAA_API_TOKEN = os.environ.get('NOAA_API_TOKEN', '')
NOAA_RECORDS_URL = os.environ.get('NOAA_RECORDS_URL', 'https://www.ncei.noaa.gov/cdo-web/api/v2/data')
FCC_BLOCK_URL = os.environ.get('FCC_BLOCK_URL', 'https://geo.fcc.gov/api/census/block/find')
OPENMETEO_GEOCODING_URL = os.environ.get('OPENMETEO_GEOCODING_URL', 'https://geocoding-api.open-meteo.com/v1/search')
OPENMETEO_ARCHIVE_URL = os.environ.get('OPENMETEO_ARCHIVE_URL', 'https://archive-api.open-meteo.com/v1/archive')
ML_API_BASE_URL = os.environ.get('ML_API_BASE_URL', 'http://127.0.0.1:8000').rstrip('/')

HTTP_TIMEOUT_SECONDS = _env_float('HTTP_TIMEOUT_SECONDS', 30.0)

# Rainfall pipeline
RAINFALL_PACING_SECONDS = _env_float('RAINFALL_PACING_SECONDS', 0.2)
RAINFALL_PAGE_SIZE = 1000  # NOAA CDO maximum per call
RAINFALL_LOOKBACK_YEARS = 25
RAINFALL_THRESHOLD = 1.0
RAINFALL_SKIPPED_YEAR_POLICY = os.environ.get('RAINFALL_SKIPPED_YEAR_POLICY', 'omit').strip().lower()
RETRY_DELAYS_SECONDS = (1, 2, 4)
