#file: aqi_pipeline/anomalies.py

import logging
from typing import List, Optional, Sequence

from aqi_pipeline.aggregation import median
from aqi_pipeline.config import AnomalyThresholds, ValidationThresholds
from aqi_pipeline.models import Anomaly, QualityReport, Reading
from aqi_pipeline.validation import ValidationResult


def valid_pm25_readings(readings: Sequence[Reading]) -> List[Reading]:
    return [r for r in readings if r.is_valid and r.pm25 is not None]


def detect_outliers(readings: Sequence[Reading], thresholds: AnomalyThresholds) -> List[Anomaly]:
    """Flag stations far from the city median; needs at least min_stations valid readings."""
    valid = valid_pm25_readings(readings)
    if len(valid) < thresholds.min_stations:
        return []

    city_median = median([r.pm25 for r in valid])
    if city_median <= 0:
        return []

    expected_min = city_median * thresholds.low_factor
    expected_max = city_median * thresholds.high_factor
    anomalies = []
    for reading in valid:
        if reading.pm25 > expected_max:
            anomalies.append(Anomaly(
                station_id=reading.station_id,
                kind="high_outlier",
                value=reading.pm25,
                description=f"Station reading ({reading.pm25:.1f}) is {reading.pm25 / city_median:.1f}x "
                            f"the city median ({city_median:.1f})",
                expected_min=expected_min,
                expected_max=expected_max,
            ))
        elif reading.pm25 < expected_min and city_median > thresholds.notable_median:
            anomalies.append(Anomaly(
                station_id=reading.station_id,
                kind="low_outlier",
                value=reading.pm25,
                description=f"Station reading ({reading.pm25:.1f}) is {reading.pm25 / city_median:.2f}x "
                            f"the city median ({city_median:.1f})",
                expected_min=expected_min,
                expected_max=expected_max,
            ))
    return anomalies


def detect_suspicious_value(reading: Reading, validation: ValidationThresholds) -> Optional[Anomaly]:
    """Exact zeros and round hundreds above 100 look like dead sensors or placeholders."""
    pm25 = reading.pm25
    if pm25 is None:
        return None
    if pm25 == 0:
        return Anomaly(
            station_id=reading.station_id,
            kind="flatline",
            value=pm25,
            description="Station reading exactly 0 (possible sensor malfunction)",
            expected_min=1.0,
            expected_max=validation.pm25_max_reasonable,
        )
    if pm25 > 100 and pm25 % 100 == 0:
        return Anomaly(
            station_id=reading.station_id,
            kind="placeholder",
            value=pm25,
            description=f"Suspiciously round number ({pm25:g}) - possible placeholder",
            expected_min=validation.pm25_min,
            expected_max=validation.pm25_max_reasonable,
        )
    return None


def detect_anomalies(readings: Sequence[Reading],
                     anomaly: AnomalyThresholds,
                     validation: ValidationThresholds) -> List[Anomaly]:
    found = [a for a in (detect_suspicious_value(r, validation) for r in valid_pm25_readings(readings)) if a]
    found.extend(detect_outliers(readings, anomaly))
    return found


def build_quality_report(readings: Sequence[Reading],
                         results: Sequence[ValidationResult],
                         total_stations: int,
                         anomaly: AnomalyThresholds,
                         validation: ValidationThresholds) -> QualityReport:
    """Advisory report for one city and hour; never changes what gets aggregated."""
    errors, warnings = [], []
    for result in results:
        errors.extend(f"[{i.code}] {i.message}" for i in result.errors)
        warnings.extend(f"[{i.code}] {i.message}" for i in result.warnings)

    anomalies = detect_anomalies(readings, anomaly, validation)
    valid = len(valid_pm25_readings(readings))
    failed = len(results) - sum(1 for r in results if r.is_valid)
    ratio = valid / total_stations if total_stations else 0.0

    if valid == 0:
        status = "unavailable"
    elif ratio < 0.3 or errors:
        status = "critical"
    elif ratio < 0.7 or anomalies:
        status = "degraded"
    else:
        status = "healthy"

    return QualityReport(
        status=status,
        stations_checked=total_stations,
        stations_valid=valid,
        stations_failed=failed,
        stations_anomalous=len({a.station_id for a in anomalies}),
        errors=errors,
        warnings=warnings,
        anomalies=anomalies,
    )


def format_quality_report(report: QualityReport) -> str:
    lines = [
        f"Data Quality Report - {report.status.upper()}",
        f"  Stations: {report.stations_valid}/{report.stations_checked} valid",
        f"  Failed: {report.stations_failed}, Anomalous: {report.stations_anomalous}",
    ]
    if report.errors:
        lines.append(f"  Errors: {len(report.errors)}")
    if report.warnings:
        lines.append(f"  Warnings: {len(report.warnings)}")
    for a in report.anomalies:
        lines.append(f"    - [{a.station_id}] {a.kind}: {a.description}")
    return "\n".join(lines)


def log_quality_report(city: str, report: QualityReport) -> None:
    if report.status in ("critical", "unavailable"):
        logging.error(f"[{city}] {format_quality_report(report)}")
    elif report.anomalies or report.warnings:
        logging.warning(f"[{city}] {format_quality_report(report)}")
