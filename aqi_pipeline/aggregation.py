#file: aqi_pipeline/aggregation.py

"""
Rollups: station readings -> city-hour snapshot -> city-day -> nation-day.

All functions here are pure; persistence and ordering are the pipeline's job.
Sums use math.fsum so results do not depend on input order.
"""

import math
from collections import Counter
from datetime import datetime, date
from typing import Dict, Iterable, List, Optional, Sequence

from aqi_pipeline.models import (
    CitySnapshot, DailyAggregate, NationalDailyAggregate, Reading, SECONDARY_POLLUTANTS,
)

# WHO Air Quality Guideline (2021), annual mean PM2.5 in µg/m³
WHO_GUIDELINE = 5.0
# Berkeley Earth: 22 µg/m³ PM2.5 ~ one cigarette per day
CIGARETTE_PM25_EQUIVALENT = 22.0
# AQLI: years of life expectancy lost per 10 µg/m³ above the WHO guideline
AQLI_YEARS_PER_10UG = 0.98

HEALTHY = "healthy"
DEGRADED = "degraded"


def mean(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return math.fsum(values) / len(values)


def median(values: Iterable[float]) -> float:
    """Two-case median: middle value, or mean of the two middle values."""
    ordered = sorted(values)
    if not ordered:
        raise ValueError("median of empty sequence")
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


def cigarettes_equivalent(pm25: float) -> float:
    return pm25 / CIGARETTE_PM25_EQUIVALENT


def years_lost_per_year(pm25: float) -> float:
    return max(0.0, (pm25 - WHO_GUIDELINE) / 10) * AQLI_YEARS_PER_10UG


def who_violation_factor(pm25: float) -> float:
    return pm25 / WHO_GUIDELINE


def health_metrics(pm25: float) -> Dict[str, float]:
    return {
        "cigarettes_equivalent": cigarettes_equivalent(pm25),
        "years_lost_per_year": years_lost_per_year(pm25),
        "who_violation_factor": who_violation_factor(pm25),
    }


def dominant_pollutant(labels: Iterable[Optional[str]]) -> Optional[str]:
    """Most common label; ties go to the one seen first."""
    counts = Counter(label for label in labels if label)
    if not counts:
        return None
    # max() keeps the first of equal counts; Counter preserves insertion order
    return max(counts.items(), key=lambda item: item[1])[0]


def quality_status(valid: int, total: int, threshold: float) -> str:
    if total > 0 and valid / total >= threshold:
        return HEALTHY
    return DEGRADED


def compute_city_snapshot(city: str,
                          hour: datetime,
                          readings: Sequence[Reading],
                          total_stations: int,
                          threshold: float = 0.5) -> Optional[CitySnapshot]:
    """City-hour snapshot from station readings, or None when no reading has a valid PM2.5."""
    valid = [r for r in readings if r.is_valid and r.pm25 is not None]
    if not valid:
        return None

    pm25_values = [r.pm25 for r in valid]
    total = max(total_stations, len({r.station_id for r in readings}))

    pollutant_averages = {
        f"avg_{pollutant}": mean(
            v for v in (getattr(r, pollutant) for r in valid) if v is not None and v > 0
        )
        for pollutant in SECONDARY_POLLUTANTS
    }

    return CitySnapshot(
        city=city,
        hour=hour,
        avg_pm25=mean(pm25_values),
        min_pm25=min(pm25_values),
        max_pm25=max(pm25_values),
        median_pm25=median(pm25_values),
        total_stations=total,
        valid_stations=len(valid),
        dominant_pollutant=dominant_pollutant(r.dominant_pollutant for r in valid),
        quality_status=quality_status(len(valid), total, threshold),
        **pollutant_averages,
    )


def compute_daily_aggregate(city: str, day: date, snapshots: Sequence[CitySnapshot]) -> Optional[DailyAggregate]:
    """
    City-day rollup from that day's snapshots, or None when there are none.

    The average is a mean of the hourly means so every hour weighs the same
    regardless of how many stations reported in it.
    """
    by_hour: Dict[datetime, CitySnapshot] = {}
    for snapshot in snapshots:
        by_hour[snapshot.hour] = snapshot
    ordered: List[CitySnapshot] = [by_hour[h] for h in sorted(by_hour)]
    if not ordered:
        return None

    avg_pm25 = mean(s.avg_pm25 for s in ordered)

    peak = ordered[0]
    for snapshot in ordered[1:]:
        if snapshot.avg_pm25 > peak.avg_pm25:
            peak = snapshot

    pollutant_averages = {
        f"avg_{pollutant}": mean(
            v for v in (getattr(s, f"avg_{pollutant}") for s in ordered) if v is not None
        )
        for pollutant in SECONDARY_POLLUTANTS
    }

    return DailyAggregate(
        city=city,
        date=day,
        avg_pm25=avg_pm25,
        min_pm25=min(s.min_pm25 for s in ordered),
        max_pm25=max(s.max_pm25 for s in ordered),
        peak_hour=peak.hour.hour,
        peak_pm25=peak.avg_pm25,
        hours_with_data=len(ordered),
        **pollutant_averages,
        **health_metrics(avg_pm25),
    )


def compute_national_aggregate(day: date,
                               dailies: Sequence[DailyAggregate],
                               populations: Dict[str, int]) -> Optional[NationalDailyAggregate]:
    """
    Nation-day rollup from per-city daily rows, or None when no configured city reported.

    Only cities present in populations count, so cities_reporting never exceeds
    the configured city count. Health metrics use the population-weighted mean.
    """
    cities = [d for d in dailies if d.city in populations and d.avg_pm25 is not None]
    if not cities:
        return None

    avg_pm25 = mean(d.avg_pm25 for d in cities)
    total_population = sum(populations[d.city] for d in cities)
    if total_population > 0:
        weighted_avg = math.fsum(d.avg_pm25 * populations[d.city] for d in cities) / total_population
    else:
        weighted_avg = avg_pm25

    best = worst = cities[0]
    for daily in cities[1:]:
        if daily.avg_pm25 < best.avg_pm25:
            best = daily
        if daily.avg_pm25 > worst.avg_pm25:
            worst = daily

    return NationalDailyAggregate(
        date=day,
        avg_pm25=avg_pm25,
        weighted_avg_pm25=weighted_avg,
        min_pm25=min(d.min_pm25 for d in cities),
        max_pm25=max(d.max_pm25 for d in cities),
        cities_reporting=len(cities),
        total_population_covered=total_population,
        best_city=best.city,
        worst_city=worst.city,
        **health_metrics(weighted_avg),
    )
