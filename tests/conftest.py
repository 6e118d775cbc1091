from datetime import datetime, date
from typing import Any, Dict, List, Optional

import pytest
import pytz

from aqi_pipeline.config import CityConfig, InfluxDBConfig, PipelineConfig, StationConfig, WaqiConfig
from aqi_pipeline.database import READINGS, SNAPSHOTS
from aqi_pipeline.models import CitySnapshot, DailyAggregate, IngestionRun, NationalDailyAggregate, Reading, Station


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.utc)


class FakeStore:
    """In-memory stand-in for InfluxStore keyed the same way InfluxDB keys points."""

    def __init__(self):
        self.stations: Dict[str, Station] = {}
        self.readings: Dict[tuple, Reading] = {}
        self.snapshots: Dict[tuple, CitySnapshot] = {}
        self.daily: Dict[tuple, DailyAggregate] = {}
        self.national: Dict[date, NationalDailyAggregate] = {}
        self.runs: Dict[str, IngestionRun] = {}
        self.fail_on: set = set()
        self.fail_stations: set = set()
        self.writes: List[str] = []

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} unavailable")

    def upsert_station(self, station: Station) -> None:
        self._check("upsert_station")
        existing = self.stations.get(station.station_id)
        if existing and station.latitude is None:
            station = station.model_copy(update={"latitude": existing.latitude, "longitude": existing.longitude})
        self.stations[station.station_id] = station
        self.writes.append("station")

    def upsert_reading(self, reading: Reading) -> None:
        self._check("upsert_reading")
        if reading.station_id in self.fail_stations:
            raise RuntimeError(f"write failed for {reading.station_id}")
        self.readings[(reading.station_id, reading.recorded_at)] = reading
        self.writes.append("reading")

    def upsert_snapshot(self, snapshot: CitySnapshot) -> None:
        self._check("upsert_snapshot")
        self.snapshots[(snapshot.city, snapshot.hour)] = snapshot
        self.writes.append("snapshot")

    def upsert_daily(self, daily: DailyAggregate) -> None:
        self._check("upsert_daily")
        self.daily[(daily.city, daily.date)] = daily
        self.writes.append("daily")

    def upsert_national(self, national: NationalDailyAggregate) -> None:
        self._check("upsert_national")
        self.national[national.date] = national
        self.writes.append("national")

    def create_run(self, run: IngestionRun) -> None:
        self._check("create_run")
        self.runs[run.run_id] = run

    def complete_run(self, run: IngestionRun) -> None:
        self._check("complete_run")
        self.runs[run.run_id] = run

    def get_snapshots_for_day(self, city: str, day: date) -> List[CitySnapshot]:
        self._check("get_snapshots_for_day")
        return sorted((s for (c, h), s in self.snapshots.items() if c == city and h.date() == day),
                      key=lambda s: s.hour)

    def get_readings(self, city: str, start: datetime, stop: datetime) -> List[Reading]:
        return sorted((r for r in self.readings.values() if r.city == city and start <= r.recorded_at < stop),
                      key=lambda r: r.recorded_at)

    def get_daily_for_date(self, day: date) -> List[DailyAggregate]:
        self._check("get_daily_for_date")
        return [d for (c, dt), d in self.daily.items() if dt == day]

    def get_national(self, day: date) -> Optional[NationalDailyAggregate]:
        return self.national.get(day)

    def get_latest_snapshots(self, lookback_days: int = 30) -> Dict[str, CitySnapshot]:
        latest: Dict[str, CitySnapshot] = {}
        for snapshot in self.snapshots.values():
            if snapshot.city not in latest or snapshot.hour > latest[snapshot.city].hour:
                latest[snapshot.city] = snapshot
        return latest

    def get_recent_snapshots(self, city: str, hours: int = 24) -> List[CitySnapshot]:
        return sorted((s for (c, _), s in self.snapshots.items() if c == city), key=lambda s: s.hour)

    def get_recent_daily(self, city: str, days: int = 30) -> List[DailyAggregate]:
        return sorted((d for (c, _), d in self.daily.items() if c == city), key=lambda d: d.date)

    def get_recent_national(self, days: int = 30) -> List[NationalDailyAggregate]:
        return sorted(self.national.values(), key=lambda n: n.date)

    def get_recent_runs(self, limit: int = 10) -> List[IngestionRun]:
        return sorted(self.runs.values(), key=lambda r: r.started_at, reverse=True)[:limit]

    def count_points(self, measurement: str, field: str, by: str | None = None) -> Dict[str, int]:
        if measurement == READINGS:
            return {"": len(self.readings)} if self.readings else {}
        if measurement == SNAPSHOTS:
            counts: Dict[str, int] = {}
            for city, _ in self.snapshots:
                counts[city] = counts.get(city, 0) + 1
            return counts
        return {}

    def get_time_range(self, measurement: str = SNAPSHOTS):
        hours = sorted(h for _, h in self.snapshots)
        return (hours[0], hours[-1]) if hours else None

    def close(self) -> None:
        pass


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None,
                 json_error: Optional[Exception] = None):
        self.status = status
        self.body = body
        self.headers = headers or {}
        self.json_error = json_error

    async def json(self, content_type=None):
        if self.json_error:
            raise self.json_error
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    aiohttp.ClientSession stand-in. `routes` maps station id to a list of
    responses (or exceptions) served in order; the last one repeats.
    """

    def __init__(self, routes: Dict[str, List[Any]]):
        self.routes = {k: list(v) for k, v in routes.items()}
        self.calls: List[str] = []
        self.closed = False

    def get(self, url: str, params=None):
        station_id = url.rstrip("/").rsplit("@", 1)[-1]
        self.calls.append(station_id)
        queue = self.routes.get(station_id) or [FakeResponse(404, {"status": "error", "data": "Unknown station"})]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def waqi_payload(pm25: Any = 50, aqi: Any = 100, iso: Optional[str] = "2026-10-19T10:00:00+05:30",
                 dominant: Optional[str] = "pm25", geo=(28.61, 77.21), **pollutants) -> Dict[str, Any]:
    iaqi = {"pm25": {"v": pm25}} if pm25 is not None else {}
    iaqi.update({name: {"v": value} for name, value in pollutants.items()})
    data: Dict[str, Any] = {"iaqi": iaqi, "city": {"name": "Somewhere", "geo": list(geo) if geo else None}}
    if aqi is not None:
        data["aqi"] = aqi
    if iso is not None:
        data["time"] = {"iso": iso}
    if dominant is not None:
        data["dominentpol"] = dominant
    return {"status": "ok", "data": data}


def make_city(slug: str, population: int, station_ids: List[str]) -> CityConfig:
    return CityConfig(
        slug=slug,
        name=slug.title(),
        state="Test",
        population=population,
        stations=tuple(StationConfig(id=s, name=f"Station {s}") for s in station_ids),
    )


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(
        cities=(
            make_city("alpha", 2000, ["a1", "a2", "a3"]),
            make_city("beta", 1000, ["b1", "b2"]),
        ),
        waqi=WaqiConfig(token="test-token"),
        batch_size=2,
        batch_delay=0.0,
        influxdb=InfluxDBConfig(url="http://localhost:8086", token="t", org="org", bucket="bucket"),
        trigger_secret="s3cret",
        ingest_on_startup=False,
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
