# file: aqi_pipeline/pipeline.py

"""
One ingestion run: shard -> fetch -> validate -> store readings -> city-hour
snapshot -> city-day aggregate, city by city.

A failed station write or city is logged and skipped, and so is a failed
provenance write. Only an error in the run bookkeeping itself escapes
run_ingestion.
"""

import asyncio
import logging
import uuid
from datetime import datetime, date
from typing import List

import aiohttp

from aqi_pipeline.aggregation import compute_city_snapshot, compute_daily_aggregate, compute_national_aggregate
from aqi_pipeline.anomalies import build_quality_report, log_quality_report
from aqi_pipeline.config import CityConfig, PipelineConfig
from aqi_pipeline.models import (
    CityResult, ForecastDay, IngestionResult, IngestionRun, NationalResult, Reading, RunStatus, TriggerKind,
)
from aqi_pipeline.sharding import select_shard
from aqi_pipeline.utils import get_current_time, to_utc, truncate_to_hour
from aqi_pipeline.validation import ValidationResult, extract_station, parse_forecast, parse_station_payload
from aqi_pipeline.waqi_api import Sleep, create_session, fetch_stations


def new_run_id(trigger: TriggerKind, started_at: datetime) -> str:
    return f"{trigger.value}-{started_at.strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:8]}"


def refresh_daily(store, city: str, day: date) -> bool:
    """Recompute and store one city-day from its stored snapshots; False when the day has none."""
    snapshots = store.get_snapshots_for_day(city, day)
    daily = compute_daily_aggregate(city, day, snapshots)
    if daily is None:
        return False
    store.upsert_daily(daily)
    return True


async def ingest_city(store,
                      config: PipelineConfig,
                      session: aiohttp.ClientSession,
                      city: CityConfig,
                      now: datetime,
                      sleep: Sleep = asyncio.sleep) -> CityResult:
    """Fetch, store and roll up one city for the hour containing `now`."""
    logging.info(f"Ingesting {city.name} ({len(city.stations)} stations)...")
    payloads = await fetch_stations(session, [s.id for s in city.stations], config, sleep=sleep, label=city.name)
    if not payloads:
        return CityResult(success=False, error="WAQI API error: no station returned data")

    readings: List[Reading] = []
    stored: List[Reading] = []
    results: List[ValidationResult] = []
    forecast: List[ForecastDay] = []

    for station in city.stations:
        payload = payloads.get(station.id)
        if payload is None:
            continue
        reading, result = parse_station_payload(payload, station, city, now, config.validation)
        results.append(result)
        if reading is None:
            logging.error(f"[{city.slug}] Rejected payload from station {station.id}: {result.format()}")
            continue
        readings.append(reading)
        if not forecast:
            forecast = parse_forecast(payload)

        try:
            store.upsert_station(extract_station(payload, station, city))
        except Exception as e:
            logging.error(f"[{city.slug}] Failed to store metadata for station {station.id}: {e}")

        try:
            store.upsert_reading(reading)
            stored.append(reading)
        except Exception as e:
            logging.error(f"[{city.slug}] Failed to store reading for station {station.id}: {e}")

    report = build_quality_report(readings, results, len(city.stations), config.anomaly, config.validation)
    log_quality_report(city.slug, report)

    hour = truncate_to_hour(now)
    snapshot = compute_city_snapshot(city.slug, hour, stored, len(city.stations), config.quality_threshold)
    if snapshot is None:
        logging.warning(f"[{city.slug}] No valid PM2.5 readings for {hour.isoformat()}, snapshot skipped")
    else:
        try:
            store.upsert_snapshot(snapshot)
        except Exception as e:
            logging.error(f"[{city.slug}] Failed to store snapshot for {hour.isoformat()}: {e}")
        else:
            try:
                refresh_daily(store, city.slug, hour.date())
            except Exception as e:
                logging.error(f"[{city.slug}] Failed to update daily aggregate for {hour.date()}: {e}")

    return CityResult(
        success=True,
        stations_fetched=len(payloads),
        readings_stored=len(stored),
        valid_stations=snapshot.valid_stations if snapshot else 0,
        avg_pm25=snapshot.avg_pm25 if snapshot else None,
        quality=report,
        forecast=forecast,
    )


async def run_ingestion(store,
                        config: PipelineConfig,
                        trigger: TriggerKind = TriggerKind.SCHEDULED,
                        now: datetime | None = None,
                        session: aiohttp.ClientSession | None = None,
                        sleep: Sleep = asyncio.sleep) -> IngestionResult:
    """Run one ingestion pass over the shard of cities selected for this hour."""
    now = to_utc(now or get_current_time())
    run = IngestionRun(run_id=new_run_id(trigger, now), started_at=now, source=trigger)

    tracked = True
    try:
        store.create_run(run)
    except Exception as e:
        tracked = False
        logging.error(f"Failed to record ingestion run start, continuing without provenance: {e}")

    cities = select_shard(config.cities, trigger, now.hour, config.shard_count)
    logging.info(f"Ingestion run {run.run_id} ({trigger.value}) processing {len(cities)} of "
                 f"{len(config.cities)} cities: {', '.join(c.slug for c in cities)}")

    result = IngestionResult(run_id=run.run_id if tracked else None, trigger=trigger, started_at=now)

    owns_session = session is None
    if owns_session:
        session = create_session(config)
    try:
        for city in cities:
            try:
                city_result = await ingest_city(store, config, session, city, now, sleep=sleep)
            except Exception as e:
                logging.error(f"Error ingesting {city.name}: {e}")
                city_result = CityResult(success=False, error=str(e))
            result.cities[city.slug] = city_result
    finally:
        if owns_session:
            await session.close()

    succeeded = [r for r in result.cities.values() if r.success]
    result.cities_processed = len(succeeded)
    result.records_processed = sum(r.readings_stored for r in succeeded)
    result.status = RunStatus.FAILED if cities and not succeeded else RunStatus.COMPLETED
    result.completed_at = get_current_time()

    failed = sorted(slug for slug, r in result.cities.items() if not r.success)
    if tracked:
        try:
            store.complete_run(run.model_copy(update={
                "completed_at": result.completed_at,
                "status": result.status,
                "cities_processed": result.cities_processed,
                "records_processed": result.records_processed,
                "error": f"Failed cities: {', '.join(failed)}" if failed else None,
            }))
        except Exception as e:
            logging.error(f"Failed to record ingestion run completion for {run.run_id}: {e}")

    logging.info(f"Ingestion run {run.run_id} {result.status.value}: {result.cities_processed}/{len(cities)} "
                 f"cities, {result.records_processed} readings")
    return result


def run_national_aggregation(store, config: PipelineConfig, day: date | None = None) -> NationalResult:
    """Roll stored city-day rows for one date (default: today, UTC) into the national row."""
    day = day or get_current_time().date()
    dailies = store.get_daily_for_date(day)
    national = compute_national_aggregate(day, dailies, config.population_by_city())
    if national is None:
        logging.info(f"No city aggregates for {day}, national aggregation skipped")
        return NationalResult(date=day, skipped=True)

    store.upsert_national(national)
    logging.info(f"National aggregate for {day}: {national.cities_reporting} cities, "
                 f"weighted PM2.5 {national.weighted_avg_pm25:.1f}")
    return NationalResult(date=day, skipped=False, aggregate=national)


def ingest_once(store, config: PipelineConfig, trigger: TriggerKind) -> IngestionResult:
    """Blocking wrapper for callers outside an event loop (scheduler thread, CLI)."""
    return asyncio.run(run_ingestion(store, config, trigger))
