#file: aqi_pipeline/validation.py

"""
Validation of WAQI station payloads.

Upstream fields are read into FieldValue (present / invalid / absent) before
any checks, so every branch of a field is handled explicitly instead of
relying on None propagating through arithmetic.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from aqi_pipeline.config import CityConfig, StationConfig, ValidationThresholds
from aqi_pipeline.models import Reading, Station, ForecastDay, SECONDARY_POLLUTANTS
from aqi_pipeline.utils import parse_timestamp

# US EPA PM2.5 breakpoints: (aqi_low, aqi_high, conc_low, conc_high)
PM25_BREAKPOINTS = (
    (0, 50, 0.0, 12.0),
    (51, 100, 12.1, 35.4),
    (101, 150, 35.5, 55.4),
    (151, 200, 55.5, 150.4),
    (201, 300, 150.5, 250.4),
    (301, 500, 250.5, 500.4),
)
PM25_CONCENTRATION_CAP = 500.4
FORECAST_DAYS = 7


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FieldState(str, Enum):
    PRESENT = "present"
    INVALID = "invalid"
    ABSENT = "absent"


@dataclass(frozen=True)
class FieldValue:
    state: FieldState
    value: Optional[float] = None
    raw: Any = None

    @property
    def present(self) -> bool:
        return self.state is FieldState.PRESENT


ABSENT = FieldValue(FieldState.ABSENT)


@dataclass(frozen=True)
class ValidationIssue:
    severity: Severity
    code: str
    message: str
    field: Optional[str] = None
    value: Any = None


@dataclass
class ValidationResult:
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, severity: Severity, code: str, message: str, field: str | None = None, value: Any = None) -> None:
        self.issues.append(ValidationIssue(severity, code, message, field, value))

    def extend(self, other: "ValidationResult") -> None:
        self.issues.extend(other.issues)

    def codes(self) -> List[str]:
        return [i.code for i in self.issues]

    def format(self) -> str:
        lines = ["Validation passed" if self.is_valid else "Validation FAILED"]
        lines.extend(f"  - [{i.severity.value}] [{i.code}] {i.message}" for i in self.issues)
        return "\n".join(lines)


def read_number(raw: Any) -> FieldValue:
    """Classify a raw JSON value as a number, an unusable value, or missing."""
    if raw is None:
        return ABSENT
    if isinstance(raw, bool):
        return FieldValue(FieldState.INVALID, raw=raw)
    if isinstance(raw, (int, float)):
        return FieldValue(FieldState.PRESENT, float(raw), raw)
    if isinstance(raw, str):
        if raw.strip() in ("", "-"):
            return FieldValue(FieldState.ABSENT, raw=raw)
        try:
            return FieldValue(FieldState.PRESENT, float(raw), raw)
        except ValueError:
            return FieldValue(FieldState.INVALID, raw=raw)
    return FieldValue(FieldState.INVALID, raw=raw)


def _nested(payload: Any, *keys: str) -> Any:
    current = payload
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def read_subindex(iaqi: Any, pollutant: str) -> FieldValue:
    if not isinstance(iaqi, dict):
        return ABSENT
    entry = iaqi.get(pollutant)
    if not isinstance(entry, dict):
        return ABSENT if entry is None else FieldValue(FieldState.INVALID, raw=entry)
    return read_number(entry.get("v"))


def subindex_to_pm25(aqi: float) -> float:
    """Convert a PM2.5 sub-index to a concentration (µg/m³) by linear interpolation."""
    if aqi <= 0:
        return 0.0
    if aqi > 500:
        return PM25_CONCENTRATION_CAP
    for aqi_low, aqi_high, conc_low, conc_high in PM25_BREAKPOINTS:
        if aqi <= aqi_high:
            return conc_low + (aqi - aqi_low) / (aqi_high - aqi_low) * (conc_high - conc_low)
    return PM25_CONCENTRATION_CAP


def validate_response(payload: Any) -> ValidationResult:
    """Top-level structural checks; failing these rejects the payload outright."""
    result = ValidationResult()
    if not isinstance(payload, dict):
        result.add(Severity.ERROR, "INVALID_RESPONSE", "Response is not a valid object", value=type(payload).__name__)
        return result
    if payload.get("status") != "ok":
        result.add(Severity.ERROR, "API_ERROR", f"WAQI API returned status: {payload.get('status')}",
                   field="status", value=payload.get("status"))
    if not isinstance(payload.get("data"), dict):
        result.add(Severity.ERROR, "MISSING_DATA", "Response missing data field", field="data")
    return result


def validate_pm25(value: FieldValue, thresholds: ValidationThresholds) -> ValidationResult:
    result = ValidationResult()
    if value.state is FieldState.ABSENT:
        result.add(Severity.ERROR, "NULL_VALUE", "PM2.5 value is missing", field="pm25")
        return result
    if value.state is FieldState.INVALID:
        result.add(Severity.ERROR, "INVALID_TYPE", "PM2.5 value is not a valid number", field="pm25", value=value.raw)
        return result

    pm25 = value.value
    if pm25 < thresholds.pm25_min:
        result.add(Severity.ERROR, "NEGATIVE_VALUE", "PM2.5 cannot be negative", field="pm25", value=pm25)
    if pm25 > thresholds.pm25_max_possible:
        result.add(Severity.ERROR, "IMPOSSIBLE_VALUE",
                   f"PM2.5 value {pm25} exceeds possible maximum ({thresholds.pm25_max_possible})",
                   field="pm25", value=pm25)
    elif pm25 > thresholds.pm25_max_reasonable:
        result.add(Severity.WARNING, "EXTREME_VALUE",
                   f"PM2.5 value {pm25} is extremely high (possible sensor error)", field="pm25", value=pm25)
    if 0 < pm25 < thresholds.pm25_typical_min:
        result.add(Severity.INFO, "SUSPICIOUSLY_LOW", f"PM2.5 value {pm25} is suspiciously low",
                   field="pm25", value=pm25)
    return result


def validate_pm25_index(value: FieldValue, thresholds: ValidationThresholds) -> ValidationResult:
    """
    Checks on the raw PM2.5 sub-index, run before conversion.

    The concentration conversion saturates at the top breakpoint, so the
    error code and out-of-scale indices have to be caught here.
    """
    result = ValidationResult()
    if not value.present:
        return result
    index = value.value
    if index == thresholds.aqi_error_code:
        result.add(Severity.ERROR, "ERROR_CODE", f"PM2.5 sub-index is error code {thresholds.aqi_error_code}",
                   field="pm25", value=index)
    elif index > thresholds.pm25_index_max:
        result.add(Severity.ERROR, "IMPOSSIBLE_VALUE",
                   f"PM2.5 sub-index {index} exceeds possible maximum ({thresholds.pm25_index_max})",
                   field="pm25", value=index)
    elif index > thresholds.aqi_max:
        result.add(Severity.WARNING, "EXTREME_VALUE",
                   f"PM2.5 sub-index {index} is beyond the index scale, concentration capped", field="pm25",
                   value=index)
    return result


def validate_aqi(value: FieldValue, thresholds: ValidationThresholds) -> ValidationResult:
    result = ValidationResult()
    if value.state is FieldState.ABSENT:
        if value.raw == "-":
            result.add(Severity.ERROR, "NO_DATA", 'AQI shows no data ("-")', field="aqi", value=value.raw)
        else:
            result.add(Severity.ERROR, "NULL_VALUE", "AQI value is missing", field="aqi")
        return result
    if value.state is FieldState.INVALID:
        result.add(Severity.ERROR, "INVALID_TYPE", "AQI value is not a valid number", field="aqi", value=value.raw)
        return result

    aqi = value.value
    if aqi == thresholds.aqi_error_code:
        result.add(Severity.ERROR, "ERROR_CODE", f"AQI value is error code {thresholds.aqi_error_code}",
                   field="aqi", value=aqi)
    elif aqi > thresholds.aqi_max:
        result.add(Severity.WARNING, "EXCEEDS_SCALE", f"AQI {aqi} exceeds scale maximum ({thresholds.aqi_max})",
                   field="aqi", value=aqi)
    if aqi < 0:
        result.add(Severity.ERROR, "NEGATIVE_VALUE", "AQI cannot be negative", field="aqi", value=aqi)
    return result


def usable_aqi(value: FieldValue, thresholds: ValidationThresholds) -> Optional[float]:
    if not value.present:
        return None
    if value.value < 0 or value.value == thresholds.aqi_error_code or value.value > thresholds.aqi_max:
        return None
    return value.value


def extract_station(payload: Dict[str, Any], station: StationConfig, city: CityConfig) -> Station:
    """Station metadata from a payload; coordinates only when the payload has them."""
    geo = _nested(payload, "data", "city", "geo")
    latitude = longitude = None
    if isinstance(geo, (list, tuple)) and len(geo) >= 2:
        lat, lng = read_number(geo[0]), read_number(geo[1])
        if lat.present and lng.present and not (lat.value == 0 and lng.value == 0):
            latitude, longitude = lat.value, lng.value
    return Station(station_id=station.id, name=station.name, city=city.slug,
                   latitude=latitude, longitude=longitude)


def parse_forecast(payload: Dict[str, Any]) -> List[ForecastDay]:
    """Up to seven days of PM2.5 forecast; malformed entries are dropped."""
    entries = _nested(payload, "data", "forecast", "daily", "pm25")
    if not isinstance(entries, list):
        return []

    forecast = []
    for entry in entries[:FORECAST_DAYS]:
        if not isinstance(entry, dict):
            continue
        avg = read_number(entry.get("avg"))
        if not avg.present:
            continue
        try:
            day = date.fromisoformat(str(entry.get("day")))
        except ValueError:
            continue
        low, high = read_number(entry.get("min")), read_number(entry.get("max"))
        forecast.append(ForecastDay(
            day=day,
            avg=avg.value,
            min=low.value if low.present else None,
            max=high.value if high.present else None,
            avg_pm25=subindex_to_pm25(avg.value),
        ))
    return forecast


def parse_station_payload(payload: Any,
                          station: StationConfig,
                          city: CityConfig,
                          fallback_time: datetime,
                          thresholds: ValidationThresholds) -> Tuple[Optional[Reading], ValidationResult]:
    """
    Turn one WAQI payload into a Reading.

    Returns (None, result) when the payload fails structural checks. Otherwise
    the reading is always returned; a PM2.5 error marks it invalid so it is
    stored but kept out of aggregation. Index problems are downgraded to
    AQI_-prefixed warnings because the concentration is still usable.
    """
    result = validate_response(payload)
    if not result.is_valid:
        return None, result

    data = payload["data"]

    aqi = read_number(data.get("aqi"))
    if "aqi" not in data:
        result.add(Severity.WARNING, "MISSING_AQI", "Station has no AQI value", field="aqi")
    else:
        for issue in validate_aqi(aqi, thresholds).issues:
            severity = Severity.WARNING if issue.severity is Severity.ERROR else issue.severity
            result.add(severity, f"AQI_{issue.code}", issue.message, issue.field, issue.value)

    recorded_at = fallback_time
    time_info = data.get("time")
    iso = time_info.get("iso") if isinstance(time_info, dict) else None
    if not iso:
        result.add(Severity.WARNING, "MISSING_TIME", "Station has no timestamp", field="time")
    else:
        try:
            recorded_at = parse_timestamp(str(iso))
        except ValueError:
            result.add(Severity.WARNING, "INVALID_TIME", f"Unparseable timestamp {iso!r}", field="time", value=iso)

    iaqi = data.get("iaqi")
    pm25_index = read_subindex(iaqi, "pm25")
    pm25 = pm25_index
    pm25_result = validate_pm25_index(pm25_index, thresholds)
    if pm25_result.is_valid:
        # negative sub-indices are passed through so the bounds check rejects them
        if pm25_index.present and pm25_index.value >= 0:
            pm25 = FieldValue(FieldState.PRESENT, subindex_to_pm25(pm25_index.value), pm25_index.raw)
        pm25_result.extend(validate_pm25(pm25, thresholds))
    result.extend(pm25_result)

    pollutants = {}
    for pollutant in SECONDARY_POLLUTANTS:
        value = read_subindex(iaqi, pollutant)
        pollutants[pollutant] = value.value if value.present else None

    dominant = data.get("dominentpol")
    reading = Reading(
        station_id=station.id,
        city=city.slug,
        recorded_at=recorded_at,
        pm25=pm25.value if pm25.present else None,
        aqi=usable_aqi(aqi, thresholds),
        dominant_pollutant=dominant if isinstance(dominant, str) and dominant else None,
        is_valid=pm25_result.is_valid,
        quality_flags=result.codes(),
        **pollutants,
    )
    return reading, result


def validate_reading(reading: Reading, thresholds: ValidationThresholds) -> Reading:
    """Re-check a reading from another source (historical import) against PM2.5 bounds."""
    pm25 = read_number(reading.pm25)
    result = validate_pm25(pm25, thresholds)
    if not result.is_valid:
        logging.warning(f"Reading {reading.station_id}@{reading.recorded_at.isoformat()} rejected: "
                        f"{', '.join(i.code for i in result.errors)}")
    return reading.model_copy(update={"is_valid": result.is_valid, "quality_flags": result.codes()})
