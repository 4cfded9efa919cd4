"""Domain models shared across services."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Union

from models.timestamps import ns_to_datetime

Scalar = Union[str, int, float, bool]


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single telemetry sample delivered by a field sensor."""

    sensor_client_id: str
    field_id: str
    timestamp_ns: int
    soil_moisture_percent: Optional[float] = None
    air_temperature_c: Optional[float] = None
    air_humidity_percent: Optional[float] = None
    soil_ph: Optional[float] = None
    precipitation_mm: Optional[float] = None
    wind_speed_kmh: Optional[float] = None
    data_quality_score: Optional[float] = None
    correlation_id: Optional[str] = None

    @property
    def timestamp(self) -> datetime:
        return ns_to_datetime(self.timestamp_ns)

    def measurements(self) -> Dict[str, float]:
        """Numeric fields that carry a finite value, keyed by store field name."""
        values = {
            "soil_moisture_percent": self.soil_moisture_percent,
            "air_temperature_c": self.air_temperature_c,
            "air_humidity_percent": self.air_humidity_percent,
            "soil_ph": self.soil_ph,
            "precipitation_mm": self.precipitation_mm,
            "wind_speed_kmh": self.wind_speed_kmh,
            "data_quality_score": self.data_quality_score,
        }
        return {
            name: float(value)
            for name, value in values.items()
            if value is not None and math.isfinite(value)
        }


@dataclass(frozen=True, slots=True)
class RuleResult:
    """Outcome of evaluating one reading; ``rule_code`` 0 means nothing fired."""

    triggered: bool
    rule_code: int
    message: str = ""
    rule_name: Optional[str] = None
    evaluation_ms: Optional[float] = None

    @classmethod
    def no_alert(cls, evaluation_ms: Optional[float] = None) -> "RuleResult":
        return cls(triggered=False, rule_code=0, evaluation_ms=evaluation_ms)


@dataclass(frozen=True, slots=True)
class AlertRecord:
    """Alert point written to the store when a rule fires."""

    tags: Dict[str, str]
    message: str
    timestamp_ns: int
    measurement: str = "alerts"

    def point_fields(self) -> Dict[str, Scalar]:
        return {"message": self.message}
