# file: aqi_pipeline/scheduler.py

import threading
import schedule
import logging
import time

from aqi_pipeline.config import PipelineConfig
from aqi_pipeline.models import TriggerKind
from aqi_pipeline.pipeline import ingest_once, run_national_aggregation


def register_jobs(scheduler: schedule.Scheduler, config: PipelineConfig, store) -> schedule.Scheduler:
    """Hourly ingestion on the hour, national rollup a quarter past."""

    def ingestion_job():
        try:
            ingest_once(store, config, TriggerKind.SCHEDULED)
        except Exception as e:
            logging.error(f"Scheduled ingestion failed: {e}")

    def national_job():
        try:
            run_national_aggregation(store, config)
        except Exception as e:
            logging.error(f"Scheduled national aggregation failed: {e}")

    scheduler.every().hour.at(":00").do(ingestion_job)
    scheduler.every().hour.at(":15").do(national_job)
    return scheduler


def run_schedule(config: PipelineConfig, store, poll_seconds: float = 30) -> schedule.Scheduler:
    """Start the periodic jobs in a background daemon thread."""
    scheduler = register_jobs(schedule.Scheduler(), config, store)

    def run_continuously():
        while True:
            scheduler.run_pending()
            time.sleep(poll_seconds)

    thread = threading.Thread(target=run_continuously, daemon=True)
    thread.start()
    logging.info("Scheduler started in background thread")
    return scheduler
