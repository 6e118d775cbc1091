# file: aqi_pipeline/status.py

from datetime import datetime
from typing import List, Dict, Any, Optional

from aqi_pipeline.aggregation import WHO_GUIDELINE, mean
from aqi_pipeline.config import FreshnessThresholds, PipelineConfig
from aqi_pipeline.database import READINGS, SNAPSHOTS
from aqi_pipeline.models import CityStatus, SystemStatus
from aqi_pipeline.utils import get_current_time, to_utc

FRESH = "fresh"
STALE = "stale"
OFFLINE = "offline"


def classify_freshness(last_update: Optional[datetime], now: datetime, thresholds: FreshnessThresholds) -> str:
    if last_update is None:
        return OFFLINE
    age_hours = (to_utc(now) - to_utc(last_update)).total_seconds() / 3600
    if age_hours < thresholds.fresh_hours:
        return FRESH
    if age_hours < thresholds.stale_hours:
        return STALE
    return OFFLINE


def city_statuses(store, config: PipelineConfig, now: datetime | None = None) -> List[CityStatus]:
    """Freshness of every configured city based on its latest snapshot."""
    now = now or get_current_time()
    latest = store.get_latest_snapshots()
    statuses = []
    for city in config.cities:
        snapshot = latest.get(city.slug)
        statuses.append(CityStatus(
            slug=city.slug,
            name=city.name,
            status=classify_freshness(snapshot.hour if snapshot else None, now, config.freshness),
            last_update=snapshot.hour if snapshot else None,
            avg_pm25=snapshot.avg_pm25 if snapshot else None,
            station_count=snapshot.valid_stations if snapshot else 0,
        ))
    return statuses


def system_status(store) -> SystemStatus:
    counts = store.count_points(SNAPSHOTS, "avg_pm25", by="city")
    time_range = store.get_time_range(SNAPSHOTS)
    return SystemStatus(
        total_snapshots=sum(counts.values()),
        cities_with_data=len([c for c, n in counts.items() if n > 0]),
        oldest_data=time_range[0] if time_range else None,
        newest_data=time_range[1] if time_range else None,
    )


def ingestion_stats(store) -> Dict[str, Any]:
    readings = store.count_points(READINGS, "is_valid")
    snapshots_by_city = store.count_points(SNAPSHOTS, "avg_pm25", by="city")
    time_range = store.get_time_range(SNAPSHOTS)
    return {
        "total_readings": sum(readings.values()),
        "total_snapshots": sum(snapshots_by_city.values()),
        "latest_snapshot": time_range[1] if time_range else None,
        "snapshots_by_city": dict(sorted(snapshots_by_city.items())),
    }


def national_stats(store, days: int = 30) -> Dict[str, Any]:
    rows = sorted(store.get_recent_national(days), key=lambda r: r.date)
    return {
        "total_days": len(rows),
        "latest_date": rows[-1].date if rows else None,
        "avg_weighted_pm25": mean(r.weighted_avg_pm25 for r in rows),
        "days_above_who_guideline": sum(1 for r in rows if r.weighted_avg_pm25 > WHO_GUIDELINE),
    }
