# file: aqi_pipeline/main.py

import logging
import uvicorn
from fastapi import FastAPI, Query, HTTPException, Depends, Header
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from aqi_pipeline.backfill import backfill
from aqi_pipeline.config import PipelineConfig, load_config
from aqi_pipeline.database import InfluxStore
from aqi_pipeline.models import (
    BackfillSummary, CitySnapshot, DailyAggregate, IngestionResult, IngestionRun, NationalDailyAggregate,
    NationalResult, TriggerKind,
)
from aqi_pipeline.pipeline import run_ingestion, run_national_aggregation
from aqi_pipeline.scheduler import run_schedule
from aqi_pipeline.status import city_statuses, ingestion_stats, national_stats, system_status
from aqi_pipeline.utils import parse_date

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

_config: PipelineConfig | None = None
_store: InfluxStore | None = None


def get_config() -> PipelineConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_store() -> InfluxStore:
    global _store
    if _store is None:
        _store = InfluxStore(get_config().influxdb)
    return _store


def require_trigger_secret(authorization: Optional[str] = Header(None),
                           config: PipelineConfig = Depends(get_config)) -> None:
    """Bearer check for endpoints that start work; no configured secret means nobody gets in."""
    if not config.trigger_secret or authorization != f"Bearer {config.trigger_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def parse_date_param(value: Optional[str], name: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} format. Use YYYY-MM-DD")


def require_city(slug: str, config: PipelineConfig) -> None:
    if config.city(slug) is None:
        raise HTTPException(status_code=404, detail=f"Unknown city: {slug}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the scheduler and, if enabled, ingest once on startup."""
    config = get_config()
    store = get_store()
    run_schedule(config, store)
    if config.ingest_on_startup:
        try:
            await run_ingestion(store, config, TriggerKind.STARTUP)
        except Exception as e:
            logging.error(f"Startup ingestion failed: {e}")
    yield
    store.close()


app = FastAPI(
    title="AQI Pipeline",
    description="Hourly air quality ingestion and aggregation for Indian cities (WAQI).",
    version="1.0",
    lifespan=lifespan
)


@app.get("/health")
async def health(config: PipelineConfig = Depends(get_config)):
    return {"status": "ok", "config_version": config.version}


@app.post("/trigger", response_model=IngestionResult, dependencies=[Depends(require_trigger_secret)])
async def trigger(config: PipelineConfig = Depends(get_config), store=Depends(get_store)):
    """Run a full, unsharded ingestion pass now."""
    logging.info("Manual ingestion triggered")
    return await run_ingestion(store, config, TriggerKind.MANUAL)


@app.post("/aggregate/national", response_model=NationalResult)
def aggregate_national(
    day: Optional[str] = Query(None, alias="date", description="Date in YYYY-MM-DD format (default: today, UTC)"),
    config: PipelineConfig = Depends(get_config),
    store=Depends(get_store),
):
    return run_national_aggregation(store, config, parse_date_param(day, "date"))


@app.post("/backfill", response_model=BackfillSummary, dependencies=[Depends(require_trigger_secret)])
def run_backfill(
    start: str = Query(..., description="Start date in YYYY-MM-DD format"),
    end: str = Query(..., description="End date in YYYY-MM-DD format"),
    city: Optional[str] = Query(None, description="Only this city slug"),
    from_readings: bool = Query(False, description="Rebuild hourly snapshots from stored readings"),
    config: PipelineConfig = Depends(get_config),
    store=Depends(get_store),
):
    start_date = parse_date_param(start, "start")
    end_date = parse_date_param(end, "end")
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="start must not be after end")
    if city is not None:
        require_city(city, config)
    logging.info(f"Backfill requested: {start_date} to {end_date}, city={city}, from_readings={from_readings}")
    return backfill(store, config, start_date, end_date, city=city, from_readings=from_readings)


@app.get("/stats")
def stats(days: int = Query(30, ge=1, le=365), store=Depends(get_store)):
    return {"ingestion": ingestion_stats(store), "national": national_stats(store, days)}


@app.get("/status")
def status(config: PipelineConfig = Depends(get_config), store=Depends(get_store)):
    """Per-city freshness plus overall snapshot coverage and the latest run."""
    runs = store.get_recent_runs(1)
    return {
        "system": system_status(store),
        "cities": city_statuses(store, config),
        "last_run": runs[0] if runs else None,
    }


@app.get("/runs", response_model=List[IngestionRun])
def runs(limit: int = Query(10, ge=1, le=100), store=Depends(get_store)):
    return store.get_recent_runs(limit)


@app.get("/cities/{slug}/latest", response_model=Optional[CitySnapshot])
def city_latest(slug: str, config: PipelineConfig = Depends(get_config), store=Depends(get_store)):
    require_city(slug, config)
    return store.get_latest_snapshots().get(slug)


@app.get("/cities/{slug}/snapshots", response_model=List[CitySnapshot])
def city_snapshots(slug: str,
                   hours: int = Query(24, ge=1, le=24 * 30, description="Look back this many hours"),
                   config: PipelineConfig = Depends(get_config),
                   store=Depends(get_store)):
    require_city(slug, config)
    return store.get_recent_snapshots(slug, hours)


@app.get("/cities/{slug}/daily", response_model=List[DailyAggregate])
def city_daily(slug: str,
               days: int = Query(30, ge=1, le=365, description="Look back this many days"),
               config: PipelineConfig = Depends(get_config),
               store=Depends(get_store)):
    require_city(slug, config)
    return store.get_recent_daily(slug, days)


@app.get("/national/daily", response_model=List[NationalDailyAggregate])
def national_daily(days: int = Query(30, ge=1, le=365), store=Depends(get_store)):
    return store.get_recent_national(days)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
