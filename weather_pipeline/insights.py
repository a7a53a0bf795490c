# file: weather_pipeline/insights.py

from typing import Dict, List, Optional

from weather_pipeline.consensus import pick_display
from weather_pipeline.models import Insight, InsightType, MetricRow, ReadingStatus, Severity, WeatherAlert
from weather_pipeline.utils import safe_mean

MAX_INSIGHTS = 4
AQI_CRITICAL = 150
AQI_WARNING = 100
HEATWAVE_CELSIUS = 38


def _row(rows: List[MetricRow], metric_id: str) -> Optional[MetricRow]:
    return next((row for row in rows if row.metric_id == metric_id), None)


def _active_values(row: Optional[MetricRow]) -> List[Optional[float]]:
    if row is None:
        return []
    return [reading.value for reading in row.readings if reading.status is ReadingStatus.ACTIVE]


def _display_source(row: Optional[MetricRow]) -> Optional[str]:
    reading = pick_display(row) if row is not None else None
    return reading.source_id if reading is not None else None


def _aqi_insight(rows: List[MetricRow]) -> Insight:
    row = _row(rows, "aqi")
    if row is None:
        return Insight(type=InsightType.RECORD, severity=Severity.INFO, timestamp_label="Observations",
                       message="Air quality readings are unavailable.", source_label=None)
    mean_aqi = safe_mean(_active_values(row))
    source = _display_source(row)
    if mean_aqi > AQI_CRITICAL:
        return Insight(type=InsightType.ALERT, severity=Severity.CRITICAL, timestamp_label="Live Alert",
                       message=f"Critical AQI levels ({round(mean_aqi)}). Avoid prolonged outdoor exposure.",
                       source_label=source)
    if mean_aqi > AQI_WARNING:
        return Insight(type=InsightType.ALERT, severity=Severity.WARNING, timestamp_label="Live Alert",
                       message=f"Unhealthy air quality ({round(mean_aqi)}). Sensitive groups should take precautions.",
                       source_label=source)
    return Insight(type=InsightType.RECORD, severity=Severity.INFO, timestamp_label="Observations",
                   message=f"Air quality is Good ({round(mean_aqi)}). Perfect for outdoor activities.",
                   source_label=source)


def _heat_insight(rows: List[MetricRow]) -> Optional[Insight]:
    row = _row(rows, "temperature")
    mean_temperature = safe_mean(_active_values(row))
    if mean_temperature <= HEATWAVE_CELSIUS:
        return None
    return Insight(type=InsightType.ALERT, severity=Severity.CRITICAL, timestamp_label="Live Alert",
                   message=f"Heatwave conditions detected. Current temp: {mean_temperature:.1f}°C.",
                   source_label=_display_source(row))


def _provenance_insight(raw_readings_count: int) -> Insight:
    noun = "reading" if raw_readings_count == 1 else "readings"
    return Insight(type=InsightType.TREND, severity=Severity.INFO, timestamp_label="Sources",
                   message=f"Aggregated from {raw_readings_count} source {noun}.")


def generate(metric_rows: List[MetricRow], raw_readings_count: int) -> List[Insight]:
    """Rule-based insights in fixed priority order, capped at four."""
    candidates = [
        _aqi_insight(metric_rows),
        _heat_insight(metric_rows),
        _provenance_insight(raw_readings_count),
    ]
    insights = []
    for insight in candidates:
        if insight is not None and len(insights) < MAX_INSIGHTS:
            insights.append(insight)
    return insights


def generate_alerts(display: Dict[str, float], city_name: str = "") -> List[WeatherAlert]:
    """Threshold alerts over the consensus display values."""
    suffix = f" in {city_name}" if city_name else ""
    alerts = []

    temperature = display.get("temperature")
    if temperature is not None:
        if temperature > 40:
            alerts.append(WeatherAlert(type="Heatwave Warning", level=Severity.CRITICAL,
                                       message=f"Extreme heat{suffix}: {temperature}°C"))
        elif temperature > 35:
            alerts.append(WeatherAlert(type="High Temperature", level=Severity.WARNING,
                                       message=f"High temp{suffix}: {temperature}°C"))
        elif temperature < 5:
            alerts.append(WeatherAlert(type="Cold Wave Warning", level=Severity.CRITICAL,
                                       message=f"Extreme cold{suffix}: {temperature}°C"))

    aqi = display.get("aqi")
    if aqi is not None:
        if aqi > 300:
            alerts.append(WeatherAlert(type="Hazardous Air Quality", level=Severity.CRITICAL,
                                       message=f"Hazardous AQI{suffix}: {aqi:g}"))
        elif aqi > 200:
            alerts.append(WeatherAlert(type="Very Unhealthy Air", level=Severity.WARNING,
                                       message=f"Very Unhealthy AQI{suffix}: {aqi:g}"))

    wind = display.get("wind")
    if wind is not None and wind > 50:
        alerts.append(WeatherAlert(type="High Wind Warning", level=Severity.WARNING,
                                   message=f"High winds{suffix}: {wind} km/h"))
    return alerts
