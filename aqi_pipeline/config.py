# file: aqi_pipeline/config.py

import os
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Tuple, Optional, Dict, Any
from dotenv import load_dotenv

from aqi_pipeline.cities import DEFAULT_CITIES

CONFIG_VERSION = "2026.10"


@dataclass(frozen=True)
class StationConfig:
    """A WAQI monitoring station as configured for a city."""
    id: str
    name: str
    area: str = ""


@dataclass(frozen=True)
class CityConfig:
    slug: str
    name: str
    state: str
    population: int
    latitude: float | None = None
    longitude: float | None = None
    stations: Tuple[StationConfig, ...] = ()


@dataclass(frozen=True)
class WaqiConfig:
    base_url: str = "https://api.waqi.info"
    token: str = ""
    user_agent: str = "aqi-pipeline/1.0 (air-quality-tracker)"
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one station fetch."""
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: float = 0.3
    default_retry_after: float = 60.0
    max_retry_after: float = 120.0


@dataclass(frozen=True)
class ValidationThresholds:
    pm25_min: float = 0.0
    pm25_max_reasonable: float = 999.0  # extreme but possible
    pm25_max_possible: float = 1500.0  # above this is a sensor error
    pm25_typical_min: float = 5.0
    aqi_max: float = 500.0
    aqi_error_code: int = 999
    pm25_index_max: float = 1000.0  # raw sub-index above this is rejected before conversion


@dataclass(frozen=True)
class AnomalyThresholds:
    min_stations: int = 3
    high_factor: float = 3.0
    low_factor: float = 0.2
    notable_median: float = 20.0


@dataclass(frozen=True)
class FreshnessThresholds:
    fresh_hours: float = 2.0
    stale_hours: float = 6.0


@dataclass(frozen=True)
class InfluxDBConfig:
    url: str | None = None
    token: str | None = None
    org: str | None = None
    bucket: str | None = None

    def is_complete(self) -> bool:
        return all([self.url, self.token, self.org, self.bucket])


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a run needs, passed explicitly to each component."""
    cities: Tuple[CityConfig, ...]
    version: str = CONFIG_VERSION
    waqi: WaqiConfig = field(default_factory=WaqiConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    batch_size: int = 5
    batch_delay: float = 0.1
    shard_count: int = 2
    validation: ValidationThresholds = field(default_factory=ValidationThresholds)
    anomaly: AnomalyThresholds = field(default_factory=AnomalyThresholds)
    quality_threshold: float = 0.5
    freshness: FreshnessThresholds = field(default_factory=FreshnessThresholds)
    influxdb: InfluxDBConfig = field(default_factory=InfluxDBConfig)
    trigger_secret: str | None = None
    ingest_on_startup: bool = True
    show_progress: bool = False

    def city(self, slug: str) -> Optional[CityConfig]:
        return next((c for c in self.cities if c.slug == slug), None)

    def population_by_city(self) -> Dict[str, int]:
        return {c.slug: c.population for c in self.cities}

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        return replace(self, **changes)


def city_from_dict(data: Dict[str, Any]) -> CityConfig:
    """Build a CityConfig from the JSON/dict city table format."""
    coordinates = data.get("coordinates") or {}
    return CityConfig(
        slug=data["slug"],
        name=data["name"],
        state=data.get("state", ""),
        population=int(data.get("population") or 0),
        latitude=coordinates.get("lat"),
        longitude=coordinates.get("lng"),
        stations=tuple(
            StationConfig(id=str(s["id"]), name=s["name"], area=s.get("area", ""))
            for s in data.get("stations", [])
        ),
    )


def load_cities(path: str | None = None) -> Tuple[CityConfig, ...]:
    """Load the city table from a JSON file, or the built-in table."""
    if not path:
        return tuple(city_from_dict(c) for c in DEFAULT_CITIES)
    with open(path, "r") as f:
        data = json.load(f)
    logging.info(f"Loaded {len(data)} cities from {path}")
    return tuple(city_from_dict(c) for c in data)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> PipelineConfig:
    """Read the environment (and .env) into a PipelineConfig."""
    load_dotenv()

    token = os.getenv("WAQI_API_TOKEN", "")
    if not token:
        logging.error("WAQI_API_TOKEN not set in environment")

    return PipelineConfig(
        cities=load_cities(os.getenv("AQI_CITIES_FILE")),
        waqi=WaqiConfig(
            base_url=os.getenv("WAQI_BASE_URL", WaqiConfig.base_url),
            token=token,
        ),
        batch_size=int(os.getenv("AQI_BATCH_SIZE", "5")),
        batch_delay=float(os.getenv("AQI_BATCH_DELAY", "0.1")),
        shard_count=int(os.getenv("AQI_SHARD_COUNT", "2")),
        quality_threshold=float(os.getenv("AQI_QUALITY_THRESHOLD", "0.5")),
        influxdb=InfluxDBConfig(
            url=os.getenv("INFLUXDB_URL"),
            token=os.getenv("INFLUXDB_TOKEN"),
            org=os.getenv("INFLUXDB_ORG"),
            bucket=os.getenv("INFLUXDB_BUCKET"),
        ),
        trigger_secret=os.getenv("TRIGGER_SECRET"),
        ingest_on_startup=_env_bool("AQI_INGEST_ON_STARTUP", True),
        show_progress=_env_bool("AQI_SHOW_PROGRESS", False),
    )
