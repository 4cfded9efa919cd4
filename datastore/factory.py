from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from datastore.base import TimeSeriesStore
from datastore.influx import InfluxDBTimeSeriesStore
from datastore.memory_tsdb import InMemoryTimeSeriesStore
from settings import get_settings


@lru_cache
def build_default_store(backend: Optional[str] = None) -> TimeSeriesStore:
    settings = get_settings()
    selected = settings.store_backend if backend is None else backend
    if selected == "influxdb":
        return InfluxDBTimeSeriesStore(
            url=settings.influx_url,
            token=settings.influx_token,
            org=settings.influx_org,
            bucket=settings.bucket,
        )
    path = Path(settings.memory_store_path) if settings.memory_store_path else None
    return InMemoryTimeSeriesStore(name=settings.bucket, persistence_path=path)
