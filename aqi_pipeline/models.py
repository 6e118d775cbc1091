#file: aqi_pipeline/models.py

from datetime import datetime, date
from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict

# Pollutants averaged alongside PM2.5, in storage order.
SECONDARY_POLLUTANTS = ("pm10", "o3", "no2", "so2", "co")


class TriggerKind(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    STARTUP = "startup"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Station(BaseModel):
    station_id: str = Field(..., description="WAQI station identifier")
    name: str = Field(..., description="Display name")
    city: str = Field(..., description="Slug of the city the station belongs to")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class Reading(BaseModel):
    station_id: str = Field(..., description="Unique identifier of the station")
    city: str = Field(..., description="Slug of the city the station belongs to")
    recorded_at: datetime = Field(..., description="Measurement time reported by the source (UTC)")
    pm25: Optional[float] = Field(None, description="PM2.5 concentration (µg/m³)")
    pm10: Optional[float] = Field(None, description="PM10 sub-index as reported")
    o3: Optional[float] = Field(None, description="O3 sub-index as reported")
    no2: Optional[float] = Field(None, description="NO2 sub-index as reported")
    so2: Optional[float] = Field(None, description="SO2 sub-index as reported")
    co: Optional[float] = Field(None, description="CO sub-index as reported")
    aqi: Optional[float] = Field(None, description="Overall index value (0-500)")
    dominant_pollutant: Optional[str] = Field(None, description="Pollutant driving the index")
    is_valid: bool = Field(True, description="False when PM2.5 failed bounds validation")
    quality_flags: List[str] = Field(default_factory=list, description="Validation/anomaly codes")


class CitySnapshot(BaseModel):
    city: str
    hour: datetime = Field(..., description="Hour the snapshot covers (UTC, truncated)")
    avg_pm25: float
    min_pm25: float
    max_pm25: float
    median_pm25: float
    avg_pm10: Optional[float] = None
    avg_o3: Optional[float] = None
    avg_no2: Optional[float] = None
    avg_so2: Optional[float] = None
    avg_co: Optional[float] = None
    total_stations: int = Field(..., ge=0)
    valid_stations: int = Field(..., ge=0)
    dominant_pollutant: Optional[str] = None
    quality_status: str = Field(..., description="'healthy' or 'degraded'")

    @model_validator(mode="after")
    def check_station_counts(self) -> "CitySnapshot":
        if self.valid_stations > self.total_stations:
            raise ValueError("valid_stations cannot exceed total_stations")
        return self


class DailyAggregate(BaseModel):
    city: str
    date: date
    avg_pm25: float
    min_pm25: float
    max_pm25: float
    peak_hour: int = Field(..., ge=0, le=23)
    peak_pm25: float
    avg_pm10: Optional[float] = None
    avg_o3: Optional[float] = None
    avg_no2: Optional[float] = None
    avg_so2: Optional[float] = None
    avg_co: Optional[float] = None
    cigarettes_equivalent: float
    years_lost_per_year: float
    who_violation_factor: float
    hours_with_data: int = Field(..., ge=0, le=24)


class NationalDailyAggregate(BaseModel):
    date: date
    avg_pm25: float = Field(..., description="Simple average across reporting cities")
    weighted_avg_pm25: float = Field(..., description="Population-weighted average")
    min_pm25: float
    max_pm25: float
    cities_reporting: int = Field(..., ge=0)
    total_population_covered: int = Field(..., ge=0)
    cigarettes_equivalent: float
    years_lost_per_year: float
    who_violation_factor: float
    best_city: str
    worst_city: str


class IngestionRun(BaseModel):
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    source: TriggerKind = TriggerKind.SCHEDULED
    status: RunStatus = RunStatus.RUNNING
    cities_processed: int = 0
    records_processed: int = 0
    error: Optional[str] = None


class ForecastDay(BaseModel):
    day: date
    avg: float = Field(..., description="Average PM2.5 sub-index")
    min: Optional[float] = None
    max: Optional[float] = None
    avg_pm25: float = Field(..., description="Average converted to concentration (µg/m³)")


class Anomaly(BaseModel):
    station_id: str
    kind: str = Field(..., description="high_outlier, low_outlier, flatline or placeholder")
    value: float
    description: str
    expected_min: Optional[float] = None
    expected_max: Optional[float] = None


class QualityReport(BaseModel):
    status: str = Field(..., description="healthy, degraded, critical or unavailable")
    stations_checked: int
    stations_valid: int
    stations_failed: int
    stations_anomalous: int
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    anomalies: List[Anomaly] = Field(default_factory=list)


class CityResult(BaseModel):
    success: bool
    stations_fetched: int = 0
    readings_stored: int = 0
    valid_stations: int = 0
    avg_pm25: Optional[float] = None
    quality: Optional[QualityReport] = None
    forecast: List[ForecastDay] = Field(default_factory=list)
    error: Optional[str] = None


class IngestionResult(BaseModel):
    run_id: Optional[str] = None
    trigger: TriggerKind
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    cities: Dict[str, CityResult] = Field(default_factory=dict)
    cities_processed: int = 0
    records_processed: int = 0


class NationalResult(BaseModel):
    date: date
    skipped: bool
    aggregate: Optional[NationalDailyAggregate] = None


class BackfillSummary(BaseModel):
    start: date
    end: date
    city: Optional[str] = None
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    snapshots_rebuilt: int = 0
    dates: Dict[str, str] = Field(default_factory=dict, description="date -> processed/skipped/error")


class CityStatus(BaseModel):
    slug: str
    name: str
    status: str = Field(..., description="fresh, stale or offline")
    last_update: Optional[datetime] = None
    avg_pm25: Optional[float] = None
    station_count: int = 0


class SystemStatus(BaseModel):
    total_snapshots: int = 0
    cities_with_data: int = 0
    oldest_data: Optional[datetime] = None
    newest_data: Optional[datetime] = None
