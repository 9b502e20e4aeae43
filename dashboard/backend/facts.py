from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np

from dashboard.backend.framing import YearCount

log = logging.getLogger('pipeline.facts')


@dataclass(frozen=True)
class YearlyTemp:
    year: int
    avg: float


@dataclass
class TemperatureFacts:
    change_per_year: Optional[float] = None
    change_per_decade: Optional[float] = None
    warmest_year: Optional[YearlyTemp] = None
    coldest_year: Optional[YearlyTemp] = None
    first_decade_average: Optional[float] = None
    last_decade_average: Optional[float] = None


@dataclass
class RainfallFacts:
    average_wet_days: Optional[float] = None
    wettest_year: Optional[YearCount] = None
    change_per_year: Optional[float] = None


def _mean(values: Sequence[float]) -> Optional[float]:
    if not len(values):
        return None
    return float(np.mean(np.asarray(values, dtype=float)))


def _slope(first_year: int, first_val: float, last_year: int, last_val: float) -> Optional[float]:
    span = last_year - first_year
    if span <= 0:
        return None
    return (last_val - first_val) / span


def compute_temperature_facts(data: Sequence[YearlyTemp]) -> TemperatureFacts:
    """Endpoint trend, extremes and first/last decade means of yearly averages."""
    if not data:
        return TemperatureFacts()
    pts = sorted(data, key=lambda p: p.year)
    # first occurrence wins on ties
    warmest = pts[int(np.argmax([p.avg for p in pts]))]
    coldest = pts[int(np.argmin([p.avg for p in pts]))]
    change = _slope(pts[0].year, pts[0].avg, pts[-1].year, pts[-1].avg)
    window = min(10, len(pts))
    facts = TemperatureFacts(
        change_per_year=change,
        change_per_decade=change * 10 if change is not None else None,
        warmest_year=warmest,
        coldest_year=coldest,
        first_decade_average=_mean([p.avg for p in pts[:window]]),
        last_decade_average=_mean([p.avg for p in pts[-window:]]),
    )
    log.info('[FACTS] temperature years=%d change/yr=%s', len(pts), change)
    return facts


def compute_rainfall_facts(data: Sequence[YearCount]) -> RainfallFacts:
    if not data:
        return RainfallFacts()
    pts = sorted(data, key=lambda p: p.year)
    wettest = pts[int(np.argmax([p.count for p in pts]))]
    return RainfallFacts(
        average_wet_days=_mean([p.count for p in pts]),
        wettest_year=wettest,
        change_per_year=_slope(pts[0].year, pts[0].count, pts[-1].year, pts[-1].count),
    )


def yearly_temps_from_json(rows: List[Dict[str, Any]]) -> List[YearlyTemp]:
    out: List[YearlyTemp] = []
    for r in rows:
        try:
            out.append(YearlyTemp(year=int(r['year']), avg=float(r['avg'])))
        except (KeyError, TypeError, ValueError):
            continue
    return out
