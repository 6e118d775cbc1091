# file: aqi_pipeline/database.py

import logging
from datetime import datetime, date, timedelta
from typing import List, Dict, Any, Optional, Iterable

import pytz
from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS

from aqi_pipeline.config import InfluxDBConfig
from aqi_pipeline.models import (
    Station, Reading, CitySnapshot, DailyAggregate, NationalDailyAggregate, IngestionRun,
    TriggerKind, RunStatus, SECONDARY_POLLUTANTS,
)
from aqi_pipeline.utils import day_bounds, format_flux_time, parse_timestamp, start_of_day, to_utc

# Station metadata lives at one fixed timestamp so its key is just the station id.
STATION_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.utc)

STATIONS = "stations"
READINGS = "readings"
SNAPSHOTS = "city_snapshots"
DAILY = "daily_aggregates"
NATIONAL = "national_daily_aggregates"
RUNS = "ingestion_runs"

SNAPSHOT_FLOATS = ("avg_pm25", "min_pm25", "max_pm25", "median_pm25") + tuple(f"avg_{p}" for p in SECONDARY_POLLUTANTS)
DAILY_FLOATS = ("avg_pm25", "min_pm25", "max_pm25", "peak_pm25") + tuple(f"avg_{p}" for p in SECONDARY_POLLUTANTS) \
    + ("cigarettes_equivalent", "years_lost_per_year", "who_violation_factor")
NATIONAL_FLOATS = ("avg_pm25", "weighted_avg_pm25", "min_pm25", "max_pm25",
                   "cigarettes_equivalent", "years_lost_per_year", "who_violation_factor")
READING_FLOATS = ("pm25",) + SECONDARY_POLLUTANTS + ("aqi",)


def _float_fields(point: Point, values: Dict[str, Any], names: Iterable[str]) -> Point:
    for name in names:
        if values.get(name) is not None:
            point.field(name, float(values[name]))
    return point


def station_point(station: Station) -> Point:
    point = Point(STATIONS).tag("station_id", station.station_id).tag("city", station.city) \
        .field("name", station.name).time(STATION_EPOCH)
    # Omitted coordinates leave any previously stored ones in place.
    if station.latitude is not None and station.longitude is not None:
        point.field("lat", float(station.latitude)).field("lon", float(station.longitude))
    return point


def reading_point(reading: Reading) -> Point:
    point = Point(READINGS).tag("station_id", reading.station_id).tag("city", reading.city) \
        .field("is_valid", reading.is_valid) \
        .field("quality_flags", ",".join(reading.quality_flags)) \
        .time(to_utc(reading.recorded_at))
    if reading.dominant_pollutant:
        point.field("dominant_pollutant", reading.dominant_pollutant)
    return _float_fields(point, reading.model_dump(), READING_FLOATS)


def snapshot_point(snapshot: CitySnapshot) -> Point:
    point = Point(SNAPSHOTS).tag("city", snapshot.city) \
        .field("total_stations", int(snapshot.total_stations)) \
        .field("valid_stations", int(snapshot.valid_stations)) \
        .field("quality_status", snapshot.quality_status) \
        .time(to_utc(snapshot.hour))
    if snapshot.dominant_pollutant:
        point.field("dominant_pollutant", snapshot.dominant_pollutant)
    return _float_fields(point, snapshot.model_dump(), SNAPSHOT_FLOATS)


def daily_point(daily: DailyAggregate) -> Point:
    point = Point(DAILY).tag("city", daily.city) \
        .field("peak_hour", int(daily.peak_hour)) \
        .field("hours_with_data", int(daily.hours_with_data)) \
        .time(start_of_day(daily.date))
    return _float_fields(point, daily.model_dump(), DAILY_FLOATS)


def national_point(national: NationalDailyAggregate) -> Point:
    point = Point(NATIONAL).tag("scope", "national") \
        .field("cities_reporting", int(national.cities_reporting)) \
        .field("total_population_covered", int(national.total_population_covered)) \
        .field("best_city", national.best_city) \
        .field("worst_city", national.worst_city) \
        .time(start_of_day(national.date))
    return _float_fields(point, national.model_dump(), NATIONAL_FLOATS)


def run_point(run: IngestionRun) -> Point:
    point = Point(RUNS).tag("run_id", run.run_id) \
        .field("source", run.source.value) \
        .field("status", run.status.value) \
        .field("cities_processed", int(run.cities_processed)) \
        .field("records_processed", int(run.records_processed)) \
        .time(to_utc(run.started_at))
    if run.completed_at is not None:
        point.field("completed_at", to_utc(run.completed_at).isoformat())
    if run.error:
        point.field("error", run.error)
    return point


def _pick(values: Dict[str, Any], names: Iterable[str]) -> Dict[str, Any]:
    return {name: values.get(name) for name in names if values.get(name) is not None}


def reading_from_record(values: Dict[str, Any], time: datetime) -> Reading:
    flags = values.get("quality_flags") or ""
    return Reading(
        station_id=values["station_id"],
        city=values["city"],
        recorded_at=time,
        dominant_pollutant=values.get("dominant_pollutant"),
        is_valid=bool(values.get("is_valid", True)),
        quality_flags=[f for f in flags.split(",") if f],
        **_pick(values, READING_FLOATS),
    )


def snapshot_from_record(values: Dict[str, Any], time: datetime) -> CitySnapshot:
    return CitySnapshot(
        city=values["city"],
        hour=time,
        total_stations=int(values.get("total_stations") or 0),
        valid_stations=int(values.get("valid_stations") or 0),
        dominant_pollutant=values.get("dominant_pollutant"),
        quality_status=values.get("quality_status") or "degraded",
        **_pick(values, SNAPSHOT_FLOATS),
    )


def daily_from_record(values: Dict[str, Any], time: datetime) -> DailyAggregate:
    return DailyAggregate(
        city=values["city"],
        date=to_utc(time).date(),
        peak_hour=int(values.get("peak_hour") or 0),
        hours_with_data=int(values.get("hours_with_data") or 0),
        **_pick(values, DAILY_FLOATS),
    )


def national_from_record(values: Dict[str, Any], time: datetime) -> NationalDailyAggregate:
    return NationalDailyAggregate(
        date=to_utc(time).date(),
        cities_reporting=int(values.get("cities_reporting") or 0),
        total_population_covered=int(values.get("total_population_covered") or 0),
        best_city=values.get("best_city") or "",
        worst_city=values.get("worst_city") or "",
        **_pick(values, NATIONAL_FLOATS),
    )


def run_from_record(values: Dict[str, Any], time: datetime) -> IngestionRun:
    completed = values.get("completed_at")
    return IngestionRun(
        run_id=values["run_id"],
        started_at=time,
        completed_at=parse_timestamp(completed) if completed else None,
        source=TriggerKind(values.get("source") or TriggerKind.SCHEDULED.value),
        status=RunStatus(values.get("status") or RunStatus.RUNNING.value),
        cities_processed=int(values.get("cities_processed") or 0),
        records_processed=int(values.get("records_processed") or 0),
        error=values.get("error"),
    )


class InfluxStore:
    """
    Persistence gateway over InfluxDB.

    A point's identity is measurement + tag set + timestamp, which is exactly
    the natural key of every row here (station id, station+recorded time,
    city+hour, city+date, date). Rows written with replace=True drop the old
    point first so fields missing from the new row do not linger.
    """

    def __init__(self, config: InfluxDBConfig, client: InfluxDBClient | None = None):
        if client is None:
            if not config.is_complete():
                raise ValueError("Missing required InfluxDB environment variables")
            client = InfluxDBClient(url=config.url, token=config.token, org=config.org)
        self.client = client
        self.bucket = config.bucket
        self.org = config.org
        self.write_api = client.write_api(write_options=SYNCHRONOUS)
        self.query_api = client.query_api()
        self.delete_api = client.delete_api()

    def close(self) -> None:
        self.client.close()

    # -- writes -------------------------------------------------------------

    def _write(self, point: Point) -> None:
        if self.write_api is None:
            logging.error("write_api is None, cannot proceed with write")
            raise ValueError("write_api is not initialized")
        self.write_api.write(bucket=self.bucket, org=self.org, record=[point])

    def _replace(self, point: Point, measurement: str, tags: Dict[str, str], time: datetime) -> None:
        predicate = " AND ".join([f'_measurement="{measurement}"'] + [f'{k}="{v}"' for k, v in tags.items()])
        start = to_utc(time)
        self.delete_api.delete(start, start + timedelta(microseconds=1), predicate, bucket=self.bucket, org=self.org)
        self._write(point)

    def upsert_station(self, station: Station) -> None:
        self._write(station_point(station))

    def upsert_reading(self, reading: Reading) -> None:
        self._replace(reading_point(reading), READINGS,
                      {"station_id": reading.station_id, "city": reading.city}, reading.recorded_at)

    def upsert_snapshot(self, snapshot: CitySnapshot) -> None:
        self._replace(snapshot_point(snapshot), SNAPSHOTS, {"city": snapshot.city}, snapshot.hour)

    def upsert_daily(self, daily: DailyAggregate) -> None:
        self._replace(daily_point(daily), DAILY, {"city": daily.city}, start_of_day(daily.date))

    def upsert_national(self, national: NationalDailyAggregate) -> None:
        self._replace(national_point(national), NATIONAL, {"scope": "national"}, start_of_day(national.date))

    def create_run(self, run: IngestionRun) -> None:
        self._write(run_point(run))

    def complete_run(self, run: IngestionRun) -> None:
        self._write(run_point(run))

    # -- reads --------------------------------------------------------------

    def _records(self, query: str) -> List[Any]:
        tables = self.query_api.query(query, org=self.org)
        return [record for table in tables for record in table.records]

    def _pivot_query(self, measurement: str, start: str, stop: str | None = None,
                     filters: Dict[str, str] | None = None, tail: str = '|> sort(columns: ["_time"])') -> str:
        stop_clause = f", stop: {stop}" if stop else ""
        conditions = " and ".join([f'r._measurement == "{measurement}"'] +
                                  [f'r["{k}"] == "{v}"' for k, v in (filters or {}).items()])
        return f'''
            from(bucket: "{self.bucket}")
            |> range(start: {start}{stop_clause})
            |> filter(fn: (r) => {conditions})
            |> pivot(rowKey:["_time"], columnKey:["_field"], valueColumn:"_value")
            {tail}
        '''

    def get_snapshots_for_day(self, city: str, day: date) -> List[CitySnapshot]:
        start, stop = day_bounds(day)
        query = self._pivot_query(SNAPSHOTS, format_flux_time(start), format_flux_time(stop), {"city": city})
        return [snapshot_from_record(r.values, r.get_time()) for r in self._records(query)]

    def get_readings(self, city: str, start: datetime, stop: datetime) -> List[Reading]:
        query = self._pivot_query(READINGS, format_flux_time(start), format_flux_time(stop), {"city": city})
        return [reading_from_record(r.values, r.get_time()) for r in self._records(query)]

    def get_daily_for_date(self, day: date) -> List[DailyAggregate]:
        start, stop = day_bounds(day)
        query = self._pivot_query(DAILY, format_flux_time(start), format_flux_time(stop))
        return [daily_from_record(r.values, r.get_time()) for r in self._records(query)]

    def get_national(self, day: date) -> Optional[NationalDailyAggregate]:
        start, stop = day_bounds(day)
        query = self._pivot_query(NATIONAL, format_flux_time(start), format_flux_time(stop))
        records = self._records(query)
        return national_from_record(records[0].values, records[0].get_time()) if records else None

    def get_latest_snapshots(self, lookback_days: int = 30) -> Dict[str, CitySnapshot]:
        """Most recent snapshot per city within the lookback window."""
        query = self._pivot_query(SNAPSHOTS, f"-{lookback_days}d", tail='''
            |> group(columns: ["city"])
            |> sort(columns: ["_time"], desc: true)
            |> limit(n: 1)
        ''')
        snapshots = [snapshot_from_record(r.values, r.get_time()) for r in self._records(query)]
        return {s.city: s for s in snapshots}

    def get_recent_snapshots(self, city: str, hours: int = 24) -> List[CitySnapshot]:
        query = self._pivot_query(SNAPSHOTS, f"-{hours}h", filters={"city": city})
        return [snapshot_from_record(r.values, r.get_time()) for r in self._records(query)]

    def get_recent_daily(self, city: str, days: int = 30) -> List[DailyAggregate]:
        query = self._pivot_query(DAILY, f"-{days}d", filters={"city": city})
        return [daily_from_record(r.values, r.get_time()) for r in self._records(query)]

    def get_recent_national(self, days: int = 30) -> List[NationalDailyAggregate]:
        query = self._pivot_query(NATIONAL, f"-{days}d")
        return [national_from_record(r.values, r.get_time()) for r in self._records(query)]

    def get_recent_runs(self, limit: int = 10) -> List[IngestionRun]:
        query = self._pivot_query(RUNS, "-30d", tail=f'''
            |> group()
            |> sort(columns: ["_time"], desc: true)
            |> limit(n: {int(limit)})
        ''')
        return [run_from_record(r.values, r.get_time()) for r in self._records(query)]

    def count_points(self, measurement: str, field: str, by: str | None = None) -> Dict[str, int]:
        """Number of rows in a measurement, optionally split by a tag ('' key when not split)."""
        group = f'|> group(columns: ["{by}"])' if by else "|> group()"
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: -10y)
            |> filter(fn: (r) => r._measurement == "{measurement}" and r._field == "{field}")
            {group}
            |> count()
        '''
        try:
            return {(r.values.get(by) if by else ""): int(r.get_value()) for r in self._records(query)}
        except Exception as e:
            logging.error(f"Error counting {measurement}: {e}")
            return {}

    def get_time_range(self, measurement: str = SNAPSHOTS) -> tuple[datetime, datetime] | None:
        """Earliest and latest timestamps stored for a measurement."""

        def get_time(desc: str = "false") -> datetime | None:
            query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: -10y)
            |> filter(fn: (r) => r._measurement == "{measurement}")
            |> keep(columns: ["_time"])
            |> group(columns: [])
            |> sort(columns: ["_time"], desc: {desc})
            |> limit(n: 1)
            '''
            timestamps = [record.get_time() for record in self._records(query)]
            return timestamps[0] if timestamps else None

        try:
            min_time = get_time(desc="false")
            max_time = get_time(desc="true")
            return (min_time, max_time) if min_time and max_time else None
        except Exception as e:
            logging.error(f"Error fetching time range failed: {e}")
            return None
