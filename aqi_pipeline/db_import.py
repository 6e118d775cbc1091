# file: aqi_pipeline/db_import.py
import json
import logging
import argparse
from typing import Dict, Any, Sequence

from pydantic import ValidationError

from aqi_pipeline.config import PipelineConfig, load_config
from aqi_pipeline.database import InfluxStore
from aqi_pipeline.models import Reading
from aqi_pipeline.validation import validate_reading


def reading_from_entry(entry: Dict[str, Any], config: PipelineConfig) -> Reading:
    """One historical record ({station_id, city, timestamp, pm25, ...}) as a Reading."""
    city = entry.get("city")
    if config.city(city) is None:
        raise ValueError(f"Unknown city: {city}")
    fields = {k: v for k, v in entry.items() if k not in ("timestamp", "recorded_at")}
    return Reading(recorded_at=entry.get("timestamp") or entry.get("recorded_at"), **fields)


def import_readings(store, config: PipelineConfig, input_file: str) -> Dict[str, int]:
    """Import historical readings from a JSON file, re-validating PM2.5 bounds on the way in."""
    with open(input_file, "r") as f:
        data = json.load(f)
    logging.info(f"Loaded {len(data)} records from {input_file}")

    counts = {"imported": 0, "invalid": 0, "rejected": 0}
    for index, entry in enumerate(data):
        try:
            reading = validate_reading(reading_from_entry(entry, config), config.validation)
        except (ValidationError, ValueError, TypeError) as e:
            logging.error(f"Skipping record {index}: {e}")
            counts["rejected"] += 1
            continue

        try:
            store.upsert_reading(reading)
        except Exception as e:
            logging.error(f"Failed to import reading {reading.station_id}@{reading.recorded_at.isoformat()}: {e}")
            counts["rejected"] += 1
            continue
        counts["imported"] += 1
        if not reading.is_valid:
            counts["invalid"] += 1

    logging.info(f"Imported {counts['imported']} readings ({counts['invalid']} flagged invalid, "
                 f"{counts['rejected']} rejected)")
    return counts


def main(argv: Sequence[str] | None = None) -> Dict[str, int]:
    parser = argparse.ArgumentParser(description="Import historical station readings from a JSON file")
    parser.add_argument("input_file", help="JSON array of readings")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    config = load_config()
    store = InfluxStore(config.influxdb)
    try:
        return import_readings(store, config, args.input_file)
    finally:
        store.close()


if __name__ == "__main__":
    main()
