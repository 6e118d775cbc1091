# file: aqi_pipeline/backfill.py

import argparse
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Sequence

from tqdm import tqdm

from aqi_pipeline.aggregation import compute_city_snapshot
from aqi_pipeline.config import CityConfig, PipelineConfig, load_config
from aqi_pipeline.database import InfluxStore
from aqi_pipeline.models import BackfillSummary, Reading
from aqi_pipeline.pipeline import refresh_daily, run_national_aggregation
from aqi_pipeline.utils import date_range, day_bounds, parse_date, truncate_to_hour

PROCESSED = "processed"
SKIPPED = "skipped"
ERROR = "error"


def group_by_hour(readings: Sequence[Reading]) -> Dict[datetime, List[Reading]]:
    """Readings bucketed by recorded hour, keeping one (the latest) per station per hour."""
    buckets: Dict[datetime, Dict[str, Reading]] = defaultdict(dict)
    for reading in sorted(readings, key=lambda r: r.recorded_at):
        buckets[truncate_to_hour(reading.recorded_at)][reading.station_id] = reading
    return {hour: list(by_station.values()) for hour, by_station in sorted(buckets.items())}


def rebuild_snapshots(store, config: PipelineConfig, city: CityConfig, day: date) -> int:
    """Recompute one city's hourly snapshots for a date from stored raw readings."""
    start, stop = day_bounds(day)
    rebuilt = 0
    for hour, readings in group_by_hour(store.get_readings(city.slug, start, stop)).items():
        snapshot = compute_city_snapshot(city.slug, hour, readings, len(city.stations), config.quality_threshold)
        if snapshot is not None:
            store.upsert_snapshot(snapshot)
            rebuilt += 1
    return rebuilt


def backfill(store,
             config: PipelineConfig,
             start: date,
             end: date,
             city: str | None = None,
             from_readings: bool = False) -> BackfillSummary:
    """
    Recompute day-level and national rollups for every date in [start, end].

    Nothing is fetched from upstream. With from_readings the hourly snapshots
    are first rebuilt from readings already in the store (e.g. after
    db_import). A date where nothing could be computed is skipped and writes
    no rows; a date that raises is counted as an error and the loop moves on.
    """
    if start > end:
        raise ValueError(f"start date {start} is after end date {end}")
    if city is not None and config.city(city) is None:
        raise ValueError(f"Unknown city: {city}")

    cities = [config.city(city)] if city else list(config.cities)
    summary = BackfillSummary(start=start, end=end, city=city)
    days = list(date_range(start, end))
    logging.info(f"Starting backfill from {start} to {end} for {len(cities)} cities "
                 f"({'rebuilding snapshots from readings' if from_readings else 'from stored snapshots'})")

    for day in tqdm(days, desc="Backfilling", disable=not config.show_progress):
        try:
            if from_readings:
                for c in cities:
                    summary.snapshots_rebuilt += rebuild_snapshots(store, config, c, day)

            dailies = sum(1 for c in cities if refresh_daily(store, c.slug, day))
            national = run_national_aggregation(store, config, day)

            if dailies == 0 and national.skipped:
                summary.skipped += 1
                summary.dates[day.isoformat()] = SKIPPED
            else:
                summary.processed += 1
                summary.dates[day.isoformat()] = PROCESSED
        except Exception as e:
            logging.error(f"Backfill failed for {day}: {e}")
            summary.errors += 1
            summary.dates[day.isoformat()] = ERROR

    logging.info(f"Backfill complete: {summary.processed} processed, {summary.skipped} skipped, "
                 f"{summary.errors} errors, {summary.snapshots_rebuilt} snapshots rebuilt")
    return summary


def main(argv: Sequence[str] | None = None) -> BackfillSummary:
    parser = argparse.ArgumentParser(description="Recompute daily and national air quality aggregates")
    parser.add_argument("--start", required=True, type=parse_date, help="First date (YYYY-MM-DD)")
    parser.add_argument("--end", required=True, type=parse_date, help="Last date, inclusive (YYYY-MM-DD)")
    parser.add_argument("--city", default=None, help="Only this city slug")
    parser.add_argument("--from-readings", action="store_true", help="Rebuild hourly snapshots from stored readings")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    config = load_config().with_overrides(show_progress=True)
    store = InfluxStore(config.influxdb)
    try:
        return backfill(store, config, args.start, args.end, city=args.city, from_readings=args.from_readings)
    finally:
        store.close()


if __name__ == "__main__":
    main()
