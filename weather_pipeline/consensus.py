# file: weather_pipeline/consensus.py

from typing import Dict, List, Optional

from weather_pipeline.models import MetricRow, ReadingStatus, SourceReading


def pick_display(row: MetricRow) -> Optional[SourceReading]:
    """Select the reading shown for a metric.

    Preference: first active official reading, then first active reading,
    then the first reading whatever its status so a stale marker can still
    be shown. None only for a row without readings.
    """
    if not row.readings:
        return None
    active = [reading for reading in row.readings if reading.status is ReadingStatus.ACTIVE]
    for reading in active:
        if reading.is_official:
            return reading
    if active:
        return active[0]
    return row.readings[0]


def display_values(rows: List[MetricRow]) -> Dict[str, float]:
    """Display value per metric id, skipping rows whose pick carries no value."""
    values = {}
    for row in rows:
        reading = pick_display(row)
        if reading is not None and reading.value is not None:
            values[row.metric_id] = reading.value
    return values
