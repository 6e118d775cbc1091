import json
import logging

import pytest

from aqi_pipeline import config as config_module
from aqi_pipeline.cities import DEFAULT_CITIES
from aqi_pipeline.config import CONFIG_VERSION, load_cities, load_config

ENV_VARS = [
    "WAQI_API_TOKEN", "WAQI_BASE_URL", "INFLUXDB_URL", "INFLUXDB_TOKEN", "INFLUXDB_ORG", "INFLUXDB_BUCKET",
    "TRIGGER_SECRET", "AQI_BATCH_SIZE", "AQI_BATCH_DELAY", "AQI_SHARD_COUNT", "AQI_QUALITY_THRESHOLD",
    "AQI_CITIES_FILE", "AQI_INGEST_ON_STARTUP", "AQI_SHOW_PROGRESS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)


def test_builtin_city_table():
    cities = load_cities()
    assert len(cities) == len(DEFAULT_CITIES)
    assert len({c.slug for c in cities}) == len(cities)
    for city in cities:
        assert city.population > 0
        assert city.stations


def test_load_config_from_environment(monkeypatch):
    monkeypatch.setenv("WAQI_API_TOKEN", "abc")
    monkeypatch.setenv("INFLUXDB_URL", "http://influx:8086")
    monkeypatch.setenv("INFLUXDB_TOKEN", "tok")
    monkeypatch.setenv("INFLUXDB_ORG", "org")
    monkeypatch.setenv("INFLUXDB_BUCKET", "aqi")
    monkeypatch.setenv("AQI_BATCH_SIZE", "3")
    monkeypatch.setenv("AQI_SHARD_COUNT", "4")
    monkeypatch.setenv("AQI_INGEST_ON_STARTUP", "false")

    config = load_config()

    assert config.version == CONFIG_VERSION
    assert config.waqi.token == "abc"
    assert config.waqi.base_url == "https://api.waqi.info"
    assert config.batch_size == 3
    assert config.shard_count == 4
    assert config.influxdb.is_complete()
    assert config.ingest_on_startup is False
    assert config.retry.max_retries == 3
    assert config.quality_threshold == 0.5


def test_missing_token_is_logged(caplog):
    with caplog.at_level(logging.ERROR):
        config = load_config()
    assert config.waqi.token == ""
    assert "WAQI_API_TOKEN" in caplog.text
    assert not config.influxdb.is_complete()


def test_cities_file_replaces_builtin_table(monkeypatch, tmp_path):
    path = tmp_path / "cities.json"
    path.write_text(json.dumps([{
        "slug": "pune", "name": "Pune", "state": "Maharashtra", "population": 7400000,
        "coordinates": {"lat": 18.52, "lng": 73.85},
        "stations": [{"id": 11290, "name": "Karve Road", "area": "Kothrud"}],
    }]))
    monkeypatch.setenv("AQI_CITIES_FILE", str(path))

    config = load_config()

    assert [c.slug for c in config.cities] == ["pune"]
    assert config.cities[0].stations[0].id == "11290"
    assert config.city("pune").latitude == 18.52
    assert config.city("delhi") is None
    assert config.population_by_city() == {"pune": 7400000}
