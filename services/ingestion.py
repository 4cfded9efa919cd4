"""Persistence of raw readings into the sensor measurement."""

from __future__ import annotations

import logging

from datastore.base import TimeSeriesStore
from models.records import SensorReading
from services.errors import MalformedReading

logger = logging.getLogger(__name__)


async def ingest_reading(
    store: TimeSeriesStore,
    reading: SensorReading,
    measurement: str = "agro_sensors",
) -> None:
    """Write ``reading`` as one point tagged by sensor and field."""
    fields = reading.measurements()
    if not fields:
        raise MalformedReading(
            f"Reading from sensor {reading.sensor_client_id!r} carries no numeric measurements."
        )

    await store.write_point(
        measurement=measurement,
        tags={
            "sensor_client_id": reading.sensor_client_id,
            "field_id": reading.field_id,
        },
        fields=fields,
        timestamp_ns=reading.timestamp_ns,
    )
    logger.debug(
        "Reading stored",
        extra={
            "correlation_id": reading.correlation_id,
            "sensor_client_id": reading.sensor_client_id,
            "measurement": measurement,
        },
    )
