from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_BACKEND_ENV = "STORE_BACKEND"
_MEMORY_STORE_PATH_ENV = "MEMORY_STORE_PATH"
_INFLUX_URL_ENV = "INFLUXDB_URL"
_INFLUX_TOKEN_ENV = "INFLUXDB_TOKEN"
_INFLUX_ORG_ENV = "INFLUXDB_ORG"
_INFLUX_BUCKET_ENV = "INFLUXDB_BUCKET"
_SENSOR_MEASUREMENT_ENV = "SENSOR_MEASUREMENT"
_FORECAST_MEASUREMENT_ENV = "FORECAST_MEASUREMENT"
_FORECAST_CITY_ENV = "FORECAST_CITY"
_PLAGUE_VARIANT_ENV = "PLAGUE_RULE_VARIANT"
_HEAT_WAVE_VARIANT_ENV = "HEAT_WAVE_RULE_VARIANT"
_CONCURRENCY_ENV = "EVALUATION_CONCURRENCY"
_LOG_LEVEL_ENV = "LOG_LEVEL"

STORE_BACKENDS = ("memory", "influxdb")
PLAGUE_VARIANTS = ("humid_mild", "alkaline_heat")
HEAT_WAVE_VARIANTS = ("daily_min", "single_min")


@dataclass(frozen=True)
class Settings:
    store_backend: str
    memory_store_path: Optional[str]
    influx_url: str
    influx_token: str
    influx_org: str
    bucket: str
    sensor_measurement: str
    forecast_measurement: str
    forecast_city: str
    plague_variant: str
    heat_wave_variant: str
    evaluation_concurrency: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_choice_env(name: str, choices: tuple[str, ...], default: str) -> str:
    candidate = _read_str_env(name, default).lower()
    return candidate if candidate in choices else default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_backend=_read_choice_env(_STORE_BACKEND_ENV, STORE_BACKENDS, "memory"),
        memory_store_path=_read_optional_env(_MEMORY_STORE_PATH_ENV, "./tmp/agro_tsdb.jsonl"),
        influx_url=_read_str_env(_INFLUX_URL_ENV, "http://localhost:8086"),
        influx_token=_read_str_env(_INFLUX_TOKEN_ENV, ""),
        influx_org=_read_str_env(_INFLUX_ORG_ENV, "agrosolutions"),
        bucket=_read_str_env(_INFLUX_BUCKET_ENV, "main-bucket"),
        sensor_measurement=_read_str_env(_SENSOR_MEASUREMENT_ENV, "agro_sensors"),
        forecast_measurement=_read_str_env(_FORECAST_MEASUREMENT_ENV, "weather_forecast"),
        forecast_city=_read_str_env(_FORECAST_CITY_ENV, "sao_paulo"),
        plague_variant=_read_choice_env(_PLAGUE_VARIANT_ENV, PLAGUE_VARIANTS, "humid_mild"),
        heat_wave_variant=_read_choice_env(
            _HEAT_WAVE_VARIANT_ENV, HEAT_WAVE_VARIANTS, "daily_min"
        ),
        evaluation_concurrency=_read_positive_int(_CONCURRENCY_ENV, 4),
        log_level=_read_log_level("INFO"),
    )
