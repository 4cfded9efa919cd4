"""Pydantic schemas for inbound messages and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.records import RuleResult, SensorReading
from models.timestamps import format_timestamp_ns, parse_timestamp_ns


class SensorReadingPayload(BaseModel):
    """Received sensor data event.

    Accepts the PascalCase keys emitted by the sensor gateway as well as
    snake_case field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    sensor_client_id: str = Field(..., alias="SensorClientId", min_length=1)
    field_id: str = Field(..., alias="FieldId", min_length=1)
    timestamp_ns: int = Field(..., alias="Timestamp")
    soil_moisture_percent: Optional[float] = Field(default=None, alias="SoilMoisturePercent")
    air_temperature_c: Optional[float] = Field(default=None, alias="AirTemperatureC")
    air_humidity_percent: Optional[float] = Field(default=None, alias="AirHumidityPercent")
    soil_ph: Optional[float] = Field(default=None, alias="SoilPH")
    precipitation_mm: Optional[float] = Field(default=None, alias="PrecipitationMm")
    wind_speed_kmh: Optional[float] = Field(default=None, alias="WindSpeedKmh")
    data_quality_score: Optional[float] = Field(default=None, alias="DataQualityScore")
    correlation_id: Optional[str] = Field(default=None, alias="CorrelationId")

    @field_validator("timestamp_ns", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> int:
        return parse_timestamp_ns(value)

    def to_reading(self, correlation_id: Optional[str] = None) -> SensorReading:
        """Build the domain reading; ``correlation_id`` fills in when the payload has none."""
        values = self.model_dump()
        if values["correlation_id"] is None:
            values["correlation_id"] = correlation_id
        return SensorReading(**values)


class RuleResultResponse(BaseModel):
    """Outcome of evaluating a reading."""

    triggered: bool
    rule_code: int = Field(..., ge=0, le=6)
    rule_name: Optional[str] = None
    message: str = ""
    evaluation_ms: Optional[float] = Field(
        default=None, description="Time spent evaluating rules, in milliseconds."
    )

    @classmethod
    def from_result(cls, result: RuleResult) -> "RuleResultResponse":
        return cls(
            triggered=result.triggered,
            rule_code=result.rule_code,
            rule_name=result.rule_name,
            message=result.message,
            evaluation_ms=result.evaluation_ms,
        )


class BatchItemResponse(BaseModel):
    sensor_client_id: str
    timestamp: str
    result: Optional[RuleResultResponse] = None
    error: Optional[str] = None


class BatchResponse(BaseModel):
    items: List[BatchItemResponse] = Field(default_factory=list)


class AlertResponse(BaseModel):
    sensor_client_id: Optional[str] = None
    field_id: Optional[str] = None
    message: str
    time: Optional[datetime] = None


def format_reading_time(reading: SensorReading) -> str:
    return format_timestamp_ns(reading.timestamp_ns)
