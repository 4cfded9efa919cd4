"""Agronomic alert rules.

Each rule is a small frozen record with a ``code`` (its precedence), a
``name``, an alert ``message_template`` and an async ``check`` that decides
the condition for one reading, reading history through a
:class:`~datastore.base.TimeSeriesStore`.

Missing data never triggers: an empty window, an absent aggregate or a value
that does not parse as a finite number all count as "condition not met".
Store failures are not caught here; they belong to the engine.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional, Protocol, Sequence, Tuple

from datastore.base import TimeSeriesStore
from datastore.query import Aggregation, Comparison, Operator, TimeWindow, parse_scalar
from models.records import SensorReading
from services.errors import MalformedReading

logger = logging.getLogger(__name__)

DROUGHT_MOISTURE_THRESHOLD = 30.0
LOW_QUALITY_THRESHOLD = 70.0
HEAT_WAVE_TEMPERATURE = 35.0
HEAT_WAVE_RAIN_PROBABILITY = 60.0
ACIDITY_PH_THRESHOLD = 5.0
ACIDITY_MOISTURE_THRESHOLD = 60.0


@dataclass(frozen=True)
class RuleContext:
    """Where rules read from; passed in explicitly, never taken from the environment."""

    bucket: str
    sensor_measurement: str = "agro_sensors"
    forecast_measurement: str = "weather_forecast"
    forecast_city: str = "sao_paulo"

    def sensor_window(
        self,
        duration: timedelta,
        fields: Tuple[str, ...],
        tags: Dict[str, str],
        **options,
    ) -> TimeWindow:
        return TimeWindow.last(
            duration,
            bucket=self.bucket,
            measurement=self.sensor_measurement,
            fields=fields,
            tags=tags,
            **options,
        )

    def rain_forecast_window(self, horizon: timedelta) -> TimeWindow:
        return TimeWindow(
            bucket=self.bucket,
            measurement=self.forecast_measurement,
            start=timedelta(0),
            stop=horizon,
            fields=("rain_probability",),
            tags=(("city", self.forecast_city),),
            aggregation=Aggregation.max,
        )


class Rule(Protocol):
    code: int
    name: str
    message_template: str

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        ...


def render_message(rule: Rule, reading: SensorReading) -> str:
    return rule.message_template.format(
        sensor_client_id=reading.sensor_client_id,
        field_id=reading.field_id,
    )


async def _aggregates(
    store: TimeSeriesStore, window: TimeWindow, rule_name: str
) -> Dict[str, float]:
    """Run an aggregated window and map each field to its parsed value."""
    rows = await store.query(window)
    values: Dict[str, float] = {}
    for row in rows:
        field_name = row.get("_field", window.fields[0])
        if field_name in values:
            continue
        parsed = parse_scalar(row.get("_value"))
        if parsed is None:
            logger.debug(
                "Ignoring unparseable aggregate",
                extra={"rule_name": rule_name, "reason": repr(row.get("_value"))},
            )
            continue
        values[field_name] = parsed
    return values


async def _aggregate(
    store: TimeSeriesStore, window: TimeWindow, rule_name: str
) -> Optional[float]:
    values = await _aggregates(store, window, rule_name)
    value = values.get(window.fields[0])
    if value is None:
        logger.debug(
            "No usable data in window",
            extra={"rule_name": rule_name, "measurement": window.measurement},
        )
    return value


async def _any_rows(store: TimeSeriesStore, window: TimeWindow) -> bool:
    rows = await store.query(window)
    return len(rows) > 0


@dataclass(frozen=True)
class DroughtRule:
    """Soil moisture dropped below 30% in the field during the last 24 hours."""

    context: RuleContext
    code: int = 1
    name: str = "drought"
    message_template: str = (
        "The field with ID {field_id} and the sensor with ID {sensor_client_id} "
        "are at risk of drying out!"
    )

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        window = self.context.sensor_window(
            timedelta(hours=24),
            ("soil_moisture_percent",),
            {"field_id": reading.field_id},
            aggregation=Aggregation.min,
        )
        lowest = await _aggregate(store, window, self.name)
        return lowest is not None and lowest < DROUGHT_MOISTURE_THRESHOLD


@dataclass(frozen=True)
class PlagueRiskRule:
    """Mild, humid air over the last 12 hours.

    Mean temperature and mean humidity are reduced independently over the
    same window bounds; both must be present for the rule to decide.
    """

    context: RuleContext
    code: int = 2
    name: str = "plague_risk"
    message_template: str = (
        "The field with ID {field_id} and the sensor with ID {sensor_client_id} "
        "present a pest risk!"
    )

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        window = self.context.sensor_window(
            timedelta(hours=12),
            ("air_temperature_c", "air_humidity_percent"),
            {"sensor_client_id": reading.sensor_client_id},
            aggregation=Aggregation.mean,
        )
        means = await _aggregates(store, window, self.name)
        temperature = means.get("air_temperature_c")
        humidity = means.get("air_humidity_percent")
        if temperature is None or humidity is None:
            return False
        return 22.0 <= temperature <= 30.0 and humidity > 80.0


@dataclass(frozen=True)
class AlkalineHeatPlagueRule:
    """Any instant in the last 10 hours with soil pH above 8 and air at 40°C or more."""

    context: RuleContext
    code: int = 2
    name: str = "plague_risk"
    message_template: str = PlagueRiskRule.message_template

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        window = self.context.sensor_window(
            timedelta(hours=10),
            ("soil_ph", "air_temperature_c"),
            {"sensor_client_id": reading.sensor_client_id},
            pivot=True,
            where=(
                Comparison("soil_ph", Operator.gt, 8.0),
                Comparison("air_temperature_c", Operator.ge, 40.0),
            ),
        )
        return await _any_rows(store, window)


@dataclass(frozen=True)
class LowDataQualityRule:
    context: RuleContext
    code: int = 3
    name: str = "low_data_quality"
    message_template: str = (
        "The sensor with ID {sensor_client_id} in the field with ID {field_id} "
        "has low data quality!"
    )

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        window = self.context.sensor_window(
            timedelta(hours=6),
            ("data_quality_score",),
            {"sensor_client_id": reading.sensor_client_id},
            aggregation=Aggregation.min,
        )
        lowest = await _aggregate(store, window, self.name)
        return lowest is not None and lowest < LOW_QUALITY_THRESHOLD


@dataclass(frozen=True)
class HeatWaveRule:
    """Three hot days in a row with little rain expected.

    Each of the last three whole days (``-3d..-2d``, ``-2d..-1d``,
    ``-1d..now``) must have a minimum air temperature above 35°C, and the
    maximum forecast rain probability over the next three days must stay
    below 60%. A day without samples breaks the streak.
    """

    context: RuleContext
    code: int = 4
    name: str = "heat_wave"
    message_template: str = (
        "The sensor with ID {sensor_client_id} in the field with ID {field_id} "
        "detected an upcoming heat wave."
    )
    days: int = 3

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        for days_ago in range(self.days, 0, -1):
            window = TimeWindow(
                bucket=self.context.bucket,
                measurement=self.context.sensor_measurement,
                start=-timedelta(days=days_ago),
                stop=-timedelta(days=days_ago - 1),
                fields=("air_temperature_c",),
                tags=(("sensor_client_id", reading.sensor_client_id),),
                aggregation=Aggregation.min,
            )
            daily_min = await _aggregate(store, window, self.name)
            if daily_min is None or daily_min <= HEAT_WAVE_TEMPERATURE:
                return False

        forecast = self.context.rain_forecast_window(timedelta(days=self.days))
        rain = await _aggregate(store, forecast, self.name)
        return rain is not None and rain < HEAT_WAVE_RAIN_PROBABILITY


@dataclass(frozen=True)
class SingleMinHeatWaveRule:
    """Minimum temperature of at least 35°C over the last three days and rain chance of 60% or less."""

    context: RuleContext
    code: int = 4
    name: str = "heat_wave"
    message_template: str = HeatWaveRule.message_template

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        window = self.context.sensor_window(
            timedelta(days=3),
            ("air_temperature_c",),
            {"sensor_client_id": reading.sensor_client_id},
            aggregation=Aggregation.min,
        )
        lowest = await _aggregate(store, window, self.name)
        if lowest is None or lowest < HEAT_WAVE_TEMPERATURE:
            return False

        forecast = self.context.rain_forecast_window(timedelta(days=3))
        rain = await _aggregate(store, forecast, self.name)
        return rain is not None and rain <= HEAT_WAVE_RAIN_PROBABILITY


@dataclass(frozen=True)
class FungalRiskRule:
    context: RuleContext
    code: int = 5
    name: str = "fungal_risk"
    message_template: str = (
        "The sensor with ID {sensor_client_id} in the field with ID {field_id} "
        "detected a high probability of fungal diseases."
    )

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        window = self.context.sensor_window(
            timedelta(hours=8),
            ("soil_moisture_percent", "air_humidity_percent", "air_temperature_c"),
            {"sensor_client_id": reading.sensor_client_id},
            pivot=True,
            where=(
                Comparison("soil_moisture_percent", Operator.gt, 70.0),
                Comparison("air_humidity_percent", Operator.gt, 85.0),
                Comparison("air_temperature_c", Operator.ge, 20.0),
                Comparison("air_temperature_c", Operator.le, 30.0),
            ),
        )
        return await _any_rows(store, window)


def _required(reading: SensorReading, field_name: str) -> float:
    value = getattr(reading, field_name)
    if value is None or not math.isfinite(value):
        raise MalformedReading(
            f"Reading from sensor {reading.sensor_client_id!r} has no usable {field_name}.",
            field_name=field_name,
        )
    return float(value)


def require_fields(rules: Sequence[Rule], reading: SensorReading) -> None:
    """Raise :class:`MalformedReading` if ``reading`` lacks a field any rule cannot do without."""
    for rule in rules:
        for field_name in getattr(rule, "required_fields", ()):
            _required(reading, field_name)


@dataclass(frozen=True)
class HighAcidityRule:
    """Acidic, wet soil on the current reading alone; no history is read."""

    code: int = 6
    name: str = "high_acidity"
    required_fields: Tuple[str, ...] = ("soil_ph", "soil_moisture_percent")
    message_template: str = (
        "The field with ID {field_id} and the sensor with ID {sensor_client_id} "
        "is at risk of high acidity with potential for reduced nutrient absorption!"
    )

    async def check(self, reading: SensorReading, store: TimeSeriesStore) -> bool:
        soil_ph = _required(reading, "soil_ph")
        moisture = _required(reading, "soil_moisture_percent")
        return soil_ph < ACIDITY_PH_THRESHOLD and moisture > ACIDITY_MOISTURE_THRESHOLD


def build_rules(
    context: RuleContext,
    plague_variant: str = "humid_mild",
    heat_wave_variant: str = "daily_min",
) -> Tuple[Rule, ...]:
    """Return the six rules in precedence order."""
    plague_rules = {
        "humid_mild": PlagueRiskRule,
        "alkaline_heat": AlkalineHeatPlagueRule,
    }
    heat_wave_rules = {
        "daily_min": HeatWaveRule,
        "single_min": SingleMinHeatWaveRule,
    }
    try:
        plague = plague_rules[plague_variant](context)
        heat_wave = heat_wave_rules[heat_wave_variant](context)
    except KeyError as exc:
        raise ValueError(f"Unknown rule variant {exc.args[0]!r}.") from exc

    return (
        DroughtRule(context),
        plague,
        LowDataQualityRule(context),
        heat_wave,
        FungalRiskRule(context),
        HighAcidityRule(),
    )


def ensure_precedence(rules: Sequence[Rule]) -> None:
    codes = [rule.code for rule in rules]
    if codes != sorted(codes) or len(set(codes)) != len(codes) or 0 in codes:
        raise ValueError(f"Rules must have unique, ascending, non-zero codes; got {codes}.")
