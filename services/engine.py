"""Rule evaluation engine: first matching rule wins and writes one alert."""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Optional, Sequence

from datastore.base import TimeSeriesStore
from datastore.errors import StoreError
from datastore.factory import build_default_store
from models.records import RuleResult, SensorReading
from services import metrics
from services.alerts import build_alert_record, write_alert_record
from services.errors import MalformedReading, QueryFailure, WriteFailure
from services.rules import Rule, RuleContext, build_rules, ensure_precedence, require_fields
from settings import get_settings

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class RuleEngine:
    """Evaluates one reading at a time against an ordered, fixed rule set.

    Rules run strictly in precedence order and evaluation stops at the first
    match, so no query of a later rule is issued once an earlier rule fired.
    The engine holds no state between readings.
    """

    def __init__(self, store: TimeSeriesStore, rules: Sequence[Rule]) -> None:
        ensure_precedence(rules)
        self.store = store
        self.rules: tuple[Rule, ...] = tuple(rules)

    def validate(self, reading: SensorReading) -> None:
        """Reject a reading that lacks a field some rule needs, before anything is stored."""
        try:
            require_fields(self.rules, reading)
        except MalformedReading:
            metrics.evaluation_failures_total.labels(kind="malformed").inc()
            raise

    async def evaluate(self, reading: SensorReading) -> RuleResult:
        """Evaluate ``reading`` and persist an alert for the first rule that fires.

        Raises :class:`QueryFailure` when a rule's query fails,
        :class:`WriteFailure` when the alert cannot be stored and
        :class:`MalformedReading` when a rule cannot do without a missing
        reading field. None of these is ever reported as "no alert".
        """
        start = time.perf_counter()
        try:
            result = await self._evaluate(reading, start)
        except (QueryFailure, WriteFailure) as exc:
            metrics.evaluation_failures_total.labels(kind=exc.kind).inc()
            raise
        except MalformedReading:
            metrics.evaluation_failures_total.labels(kind="malformed").inc()
            raise
        finally:
            metrics.evaluation_duration_seconds.observe(time.perf_counter() - start)

        metrics.rule_evaluations_total.labels(rule_code=str(result.rule_code)).inc()
        logger.debug(
            "Reading evaluated",
            extra={
                "correlation_id": reading.correlation_id,
                "sensor_client_id": reading.sensor_client_id,
                "rule_code": result.rule_code,
                "evaluation_ms": result.evaluation_ms,
            },
        )
        return result

    async def _evaluate(self, reading: SensorReading, start: float) -> RuleResult:
        for rule in self.rules:
            try:
                matched = await rule.check(reading, self.store)
            except StoreError as exc:
                logger.error(
                    "Rule query failed",
                    extra={
                        "correlation_id": reading.correlation_id,
                        "sensor_client_id": reading.sensor_client_id,
                        "rule_code": rule.code,
                        "rule_name": rule.name,
                        "operation": "query",
                        "reason": str(exc),
                    },
                )
                raise QueryFailure(
                    f"Rule {rule.code} ({rule.name}) could not query the store: {exc}",
                    rule_code=rule.code,
                ) from exc

            if not matched:
                continue

            alert = build_alert_record(rule, reading)
            try:
                await write_alert_record(self.store, alert)
            except StoreError as exc:
                logger.error(
                    "Alert write failed",
                    extra={
                        "correlation_id": reading.correlation_id,
                        "sensor_client_id": reading.sensor_client_id,
                        "rule_code": rule.code,
                        "operation": "write",
                        "reason": str(exc),
                    },
                )
                raise WriteFailure(
                    f"Rule {rule.code} ({rule.name}) matched but the alert was not stored: {exc}",
                    rule_code=rule.code,
                ) from exc

            metrics.alerts_written_total.labels(rule_code=str(rule.code)).inc()
            logger.warning(
                alert.message,
                extra={
                    "correlation_id": reading.correlation_id,
                    "sensor_client_id": reading.sensor_client_id,
                    "field_id": reading.field_id,
                    "rule_code": rule.code,
                    "rule_name": rule.name,
                },
            )
            return RuleResult(
                triggered=True,
                rule_code=rule.code,
                message=alert.message,
                rule_name=rule.name,
                evaluation_ms=_elapsed_ms(start),
            )

        return RuleResult.no_alert(evaluation_ms=_elapsed_ms(start))


@lru_cache
def build_default_engine(store: Optional[TimeSeriesStore] = None) -> RuleEngine:
    """Factory that wires the engine from settings and the default store."""
    settings = get_settings()
    context = RuleContext(
        bucket=settings.bucket,
        sensor_measurement=settings.sensor_measurement,
        forecast_measurement=settings.forecast_measurement,
        forecast_city=settings.forecast_city,
    )
    rules = build_rules(
        context,
        plague_variant=settings.plague_variant,
        heat_wave_variant=settings.heat_wave_variant,
    )
    return RuleEngine(store=store or build_default_store(), rules=rules)
