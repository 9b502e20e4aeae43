"""Newline-delimited JSON frames for the rainfall stream.

Each frame is one UTF-8 line holding a single JSON object:
- ``{"year": "2020", "count": 41}`` for a finished year
- ``{"error": "..."}`` for a failure (optionally with ``"year"`` when it
  stands in for a skipped year)
"""
from __future__ import annotations
import json
import math
import numbers
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class YearCount:
    year: int
    count: int


@dataclass(frozen=True)
class ErrorFrame:
    error: str
    year: Optional[int] = None


Frame = Union[YearCount, ErrorFrame]

UNKNOWN_ERROR = 'Unknown error while streaming rainfall data.'


def _line(payload: dict) -> bytes:
    return (json.dumps(payload) + '\n').encode('utf-8')


def encode_year_count(item: YearCount) -> bytes:
    # year travels as a string on the wire
    return _line({'year': str(item.year), 'count': int(item.count)})


def encode_error(message: str, year: Optional[int] = None) -> bytes:
    payload = {'error': str(message)}
    if year is not None:
        payload['year'] = str(year)
    return _line(payload)


def _as_year(raw) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, numbers.Integral):
        return int(raw)
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


def parse_frame(line: str) -> Optional[Frame]:
    """Parse one complete line. Returns None for blank or malformed input."""
    if not line or not line.strip():
        return None
    try:
        obj = json.loads(line)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    if 'error' in obj:
        message = obj['error']
        if message is None or message == '':
            message = UNKNOWN_ERROR
        return ErrorFrame(error=str(message), year=_as_year(obj.get('year')))
    year = _as_year(obj.get('year'))
    count = obj.get('count')
    if year is None or isinstance(count, bool) or not isinstance(count, numbers.Real) or not math.isfinite(count):
        return None
    return YearCount(year=year, count=int(count))
