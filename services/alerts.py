"""Alert record assembly and lookup."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from datastore.base import TimeSeriesStore
from datastore.query import TimeWindow
from models.records import AlertRecord, SensorReading
from services.rules import Rule, render_message

ALERT_MEASUREMENT = "alerts"


def build_alert_record(rule: Rule, reading: SensorReading) -> AlertRecord:
    """Alert for ``rule`` firing on ``reading``, stamped with the reading's own time."""
    return AlertRecord(
        measurement=ALERT_MEASUREMENT,
        tags={
            "sensor_client_id": str(reading.sensor_client_id),
            "field_id": str(reading.field_id),
        },
        message=render_message(rule, reading),
        timestamp_ns=reading.timestamp_ns,
    )


async def write_alert_record(store: TimeSeriesStore, alert: AlertRecord) -> None:
    await store.write_point(
        measurement=alert.measurement,
        tags=alert.tags,
        fields=alert.point_fields(),
        timestamp_ns=alert.timestamp_ns,
    )


@dataclass(frozen=True)
class StoredAlert:
    sensor_client_id: Optional[str]
    field_id: Optional[str]
    message: str
    time: Optional[datetime]


async def recent_alerts(
    store: TimeSeriesStore,
    bucket: str,
    hours: int = 24,
    sensor_client_id: Optional[str] = None,
) -> List[StoredAlert]:
    """Alerts written during the last ``hours``, newest first."""
    tags = {"sensor_client_id": sensor_client_id} if sensor_client_id else None
    window = TimeWindow.last(
        timedelta(hours=hours),
        bucket=bucket,
        measurement=ALERT_MEASUREMENT,
        fields=("message",),
        tags=tags,
    )
    rows = await store.query(window)
    alerts = [
        StoredAlert(
            sensor_client_id=row.get("sensor_client_id"),
            field_id=row.get("field_id"),
            message=str(row.get("_value", "")),
            time=row.time,
        )
        for row in rows
    ]
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    alerts.sort(key=lambda alert: alert.time or oldest, reverse=True)
    return alerts
