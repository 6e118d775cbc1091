import asyncio
import logging
from datetime import date

import pytest

from aqi_pipeline import pipeline
from aqi_pipeline.models import RunStatus, TriggerKind
from aqi_pipeline.pipeline import run_ingestion, run_national_aggregation
from aqi_pipeline.validation import subindex_to_pm25

from conftest import FakeResponse, FakeSession, RecordingSleep, utc, waqi_payload

NOW = utc(2026, 10, 19, 10, 20)
HOUR = utc(2026, 10, 19, 10)
DAY = date(2026, 10, 19)


def routes(**overrides):
    table = {
        "a1": [FakeResponse(200, waqi_payload(pm25=50))],
        "a2": [FakeResponse(200, waqi_payload(pm25=80))],
        "a3": [FakeResponse(200, waqi_payload(pm25=100))],
        "b1": [FakeResponse(200, waqi_payload(pm25=150))],
        "b2": [FakeResponse(200, waqi_payload(pm25=160, dominant="pm10"))],
    }
    table.update({k: [v] for k, v in overrides.items()})
    return table


def ingest(store, config, trigger=TriggerKind.MANUAL, now=NOW, **overrides):
    session = FakeSession(routes(**overrides))
    return asyncio.run(run_ingestion(store, config, trigger, now=now, session=session, sleep=RecordingSleep()))


def test_full_run_stores_every_level(store, config):
    result = ingest(store, config)

    assert result.status is RunStatus.COMPLETED
    assert result.cities_processed == 2
    assert result.records_processed == 5
    assert set(store.stations) == {"a1", "a2", "a3", "b1", "b2"}
    assert len(store.readings) == 5

    alpha = store.snapshots[("alpha", HOUR)]
    assert alpha.valid_stations == 3
    assert alpha.total_stations == 3
    assert alpha.quality_status == "healthy"
    assert alpha.avg_pm25 == pytest.approx((subindex_to_pm25(50) + subindex_to_pm25(80) + subindex_to_pm25(100)) / 3)

    daily = store.daily[("alpha", DAY)]
    assert daily.hours_with_data == 1
    assert daily.avg_pm25 == pytest.approx(alpha.avg_pm25)
    assert daily.peak_hour == 10
    assert result.cities["alpha"].avg_pm25 == pytest.approx(alpha.avg_pm25)


def test_malformed_payload_does_not_block_siblings(store, config):
    result = ingest(store, config, a2=FakeResponse(200, {"status": "error", "data": "Unknown station"}))

    alpha = store.snapshots[("alpha", HOUR)]
    assert alpha.valid_stations == 2
    assert alpha.total_stations == 3
    assert result.cities["alpha"].success
    assert result.cities["alpha"].readings_stored == 2
    assert result.cities["alpha"].quality.stations_failed == 1


def test_failed_fetch_does_not_block_siblings(store, config):
    ingest(store, config, a1=FakeResponse(403, {"status": "error"}))
    assert store.snapshots[("alpha", HOUR)].valid_stations == 2


def test_invalid_reading_stored_but_not_aggregated(store, config):
    ingest(store, config, a3=FakeResponse(200, waqi_payload(pm25=-5)))

    stored = [r for r in store.readings.values() if r.station_id == "a3"]
    assert len(stored) == 1
    assert not stored[0].is_valid
    assert "NEGATIVE_VALUE" in stored[0].quality_flags
    assert store.snapshots[("alpha", HOUR)].valid_stations == 2


def test_rerun_produces_identical_rows(store, config):
    ingest(store, config)
    run_national_aggregation(store, config, DAY)
    first = (
        {k: v.model_dump() for k, v in store.snapshots.items()},
        {k: v.model_dump() for k, v in store.daily.items()},
        {k: v.model_dump() for k, v in store.national.items()},
    )

    ingest(store, config)
    run_national_aggregation(store, config, DAY)
    second = (
        {k: v.model_dump() for k, v in store.snapshots.items()},
        {k: v.model_dump() for k, v in store.daily.items()},
        {k: v.model_dump() for k, v in store.national.items()},
    )

    assert first == second
    assert len(store.readings) == 5


def test_run_provenance_recorded(store, config):
    result = ingest(store, config, b1=FakeResponse(404), b2=FakeResponse(404))

    run = store.runs[result.run_id]
    assert run.source is TriggerKind.MANUAL
    assert run.status is RunStatus.COMPLETED
    assert run.cities_processed == 1
    assert run.records_processed == 3
    assert run.completed_at is not None
    assert run.error == "Failed cities: beta"


def test_provenance_failure_does_not_stop_ingestion(store, config):
    store.fail_on.add("create_run")
    result = ingest(store, config)

    assert result.run_id is None
    assert result.status is RunStatus.COMPLETED
    assert ("alpha", HOUR) in store.snapshots
    assert store.runs == {}


def test_completion_failure_is_logged_not_raised(store, config):
    store.fail_on.add("complete_run")
    result = ingest(store, config)
    assert result.status is RunStatus.COMPLETED
    assert store.runs[result.run_id].status is RunStatus.RUNNING


def test_station_write_failure_skips_only_that_station(store, config):
    store.fail_stations.add("a1")
    result = ingest(store, config)

    assert result.cities["alpha"].readings_stored == 2
    assert store.snapshots[("alpha", HOUR)].valid_stations == 2


def test_station_metadata_failure_keeps_readings(store, config, caplog):
    store.fail_on.add("upsert_station")
    with caplog.at_level(logging.ERROR):
        result = ingest(store, config)

    assert len(store.readings) == 5
    assert result.cities["alpha"].readings_stored == 3
    assert ("alpha", HOUR) in store.snapshots
    assert ("beta", HOUR) in store.snapshots
    assert "Failed to store metadata for station a1" in caplog.text


def test_snapshot_write_failure_does_not_abort_run(store, config):
    store.fail_on.add("upsert_snapshot")
    result = ingest(store, config)

    assert result.cities["alpha"].success
    assert result.cities["beta"].success
    assert store.daily == {}


def test_city_failure_does_not_abort_run(store, config, monkeypatch):
    original = pipeline.fetch_stations

    async def flaky_fetch(session, station_ids, config, sleep, label):
        if label == "Alpha":
            raise RuntimeError("boom")
        return await original(session, station_ids, config, sleep=sleep, label=label)

    monkeypatch.setattr(pipeline, "fetch_stations", flaky_fetch)
    result = ingest(store, config)

    assert not result.cities["alpha"].success
    assert result.cities["alpha"].error == "boom"
    assert result.cities["beta"].success
    assert result.status is RunStatus.COMPLETED


def test_every_city_failing_marks_run_failed(store, config):
    result = ingest(store, config, a1=FakeResponse(404), a2=FakeResponse(404), a3=FakeResponse(404),
                    b1=FakeResponse(404), b2=FakeResponse(404))
    assert result.status is RunStatus.FAILED
    assert result.cities_processed == 0
    assert store.snapshots == {}
    assert store.runs[result.run_id].status is RunStatus.FAILED


def test_scheduled_run_is_sharded(store, config):
    session = FakeSession(routes())
    result = asyncio.run(run_ingestion(store, config, TriggerKind.SCHEDULED, now=NOW, session=session,
                                       sleep=RecordingSleep()))
    assert list(result.cities) == ["alpha"]
    assert sorted(session.calls) == ["a1", "a2", "a3"]


def test_forecast_and_quality_attached(store, config):
    payload = waqi_payload(pm25=50)
    payload["data"]["forecast"] = {"daily": {"pm25": [{"day": "2026-10-20", "avg": 100, "min": 90, "max": 110}]}}
    result = ingest(store, config, a1=FakeResponse(200, payload))

    assert [f.day for f in result.cities["alpha"].forecast] == [date(2026, 10, 20)]
    assert result.cities["alpha"].quality.status == "healthy"


def test_owned_session_is_closed(store, config, monkeypatch):
    session = FakeSession(routes())
    monkeypatch.setattr(pipeline, "create_session", lambda config: session)
    asyncio.run(run_ingestion(store, config, TriggerKind.MANUAL, now=NOW, sleep=RecordingSleep()))
    assert session.closed


def test_national_aggregation_after_ingestion(store, config):
    ingest(store, config)
    result = run_national_aggregation(store, config, DAY)

    assert not result.skipped
    national = store.national[DAY]
    assert national.cities_reporting == 2
    assert national.total_population_covered == 3000
    alpha, beta = store.daily[("alpha", DAY)].avg_pm25, store.daily[("beta", DAY)].avg_pm25
    assert national.weighted_avg_pm25 == pytest.approx((alpha * 2000 + beta * 1000) / 3000)
    assert national.best_city == "alpha"
    assert national.worst_city == "beta"


def test_national_aggregation_skips_empty_day(store, config):
    result = run_national_aggregation(store, config, DAY)
    assert result.skipped
    assert store.writes == []
