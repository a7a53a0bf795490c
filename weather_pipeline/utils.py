# file: weather_pipeline/utils.py

from datetime import datetime, timedelta
import pytz
from typing import Iterable, Tuple

from weather_pipeline.models import Resolution

# Days of history requested from the backend per resolution
RESOLUTION_DAYS = {
    Resolution.H12: 0.5,
    Resolution.H24: 1,
    Resolution.H48: 2,
    Resolution.D7: 7,
    Resolution.D14: 14,
    Resolution.D30: 30,
}

# Hours sliced out of the fallback hourly block; 14d/30d reuse the 7-day window
FALLBACK_RESOLUTION_HOURS = {
    Resolution.H12: 12,
    Resolution.H24: 24,
    Resolution.H48: 48,
    Resolution.D7: 168,
    Resolution.D14: 168,
    Resolution.D30: 168,
}


def get_current_time() -> str:
    """Get current UTC time as a formatted string."""
    return datetime.now(pytz.utc).isoformat()


def history_window(resolution: Resolution, now: datetime | None = None) -> Tuple[str, str]:
    """Return the (start, end) ISO timestamps of the window requested for a resolution."""
    end = now or datetime.now(pytz.utc)
    start = end - timedelta(days=RESOLUTION_DAYS[resolution])
    return start.isoformat(), end.isoformat()


def is_hourly_resolution(resolution: Resolution) -> bool:
    return RESOLUTION_DAYS[resolution] <= 2


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp, accepting a trailing Z."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def hour_label(moment: datetime) -> str:
    # Hour is not zero-padded: "9:00", "14:00"
    return f"{moment.hour}:00"


def day_label(moment: datetime) -> str:
    return f"{moment.strftime('%b')} {moment.day}"


def point_label(moment: datetime, resolution: Resolution) -> str:
    return hour_label(moment) if is_hourly_resolution(resolution) else day_label(moment)


def forecast_label(offset: int) -> str:
    return "Now" if offset == 0 else f"+{offset}h"


def safe_mean(values: Iterable[float | None]) -> float:
    """Arithmetic mean of the non-null values; 0 for an empty set."""
    present = [v for v in values if v is not None]
    if not present:
        return 0.0
    return sum(present) / len(present)


def aqi_status(aqi: float) -> str:
    if aqi <= 50:
        return "Safe"
    if aqi <= 150:
        return "Moderate"
    return "Hazardous"
