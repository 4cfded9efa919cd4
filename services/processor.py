"""Inbound reading handling: decode, store, evaluate."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Union

from pydantic import ValidationError

from app.schemas import SensorReadingPayload
from datastore.errors import StoreError
from logging_config import correlation_scope
from models.records import RuleResult, SensorReading
from services.engine import RuleEngine, build_default_engine
from services.errors import EvaluationFailed, MalformedReading
from services.ingestion import ingest_reading
from settings import get_settings

logger = logging.getLogger(__name__)

_BOUNDARY_ERRORS = (EvaluationFailed, MalformedReading, StoreError)


@dataclass(frozen=True)
class BatchOutcome:
    reading: SensorReading
    result: Optional[RuleResult] = None
    error: Optional[Exception] = None


class ReadingProcessor:
    """Coordinates raw-reading storage and rule evaluation for delivered messages.

    Failures are logged with the reading's correlation id and re-raised; the
    delivery mechanism decides whether a message is retried or dead-lettered.
    """

    def __init__(
        self,
        engine: RuleEngine,
        ingest: bool = True,
        concurrency: int = 4,
        sensor_measurement: str = "agro_sensors",
    ) -> None:
        self.engine = engine
        self.store = engine.store
        self.ingest = ingest
        self.concurrency = concurrency
        self.sensor_measurement = sensor_measurement

    @staticmethod
    def decode(message: Union[str, bytes]) -> SensorReading:
        """Parse a queue message body into a reading."""
        try:
            payload = SensorReadingPayload.model_validate_json(message)
        except ValidationError as exc:
            logger.error(
                "Invalid sensor data message",
                extra={"reason": f"{exc.error_count()} validation error(s)"},
            )
            raise MalformedReading(f"Invalid sensor data message: {exc}") from exc
        return payload.to_reading()

    async def handle_message(self, message: Union[str, bytes]) -> RuleResult:
        return await self.process(self.decode(message))

    async def process(self, reading: SensorReading, ingest: Optional[bool] = None) -> RuleResult:
        """Validate, optionally store, then evaluate ``reading``.

        Validation runs first so a malformed reading is never stored.
        """
        should_ingest = self.ingest if ingest is None else ingest
        with correlation_scope(reading.correlation_id):
            try:
                self.engine.validate(reading)
                if should_ingest:
                    await ingest_reading(self.store, reading, self.sensor_measurement)
                return await self.engine.evaluate(reading)
            except _BOUNDARY_ERRORS as exc:
                logger.error(
                    "Error processing sensor reading",
                    extra={
                        "correlation_id": reading.correlation_id,
                        "sensor_client_id": reading.sensor_client_id,
                        "field_id": reading.field_id,
                        "reason": f"{type(exc).__name__}: {exc}",
                    },
                )
                raise

    async def process_batch(
        self, readings: Iterable[SensorReading], ingest: Optional[bool] = None
    ) -> List[BatchOutcome]:
        """Evaluate independent readings concurrently, at most ``concurrency`` at a time.

        Every reading gets an outcome; one failing reading never hides the
        others. Cancellation of a reading still propagates.
        """
        batch = list(readings)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(reading: SensorReading) -> BatchOutcome:
            async with semaphore:
                try:
                    result = await self.process(reading, ingest=ingest)
                except _BOUNDARY_ERRORS as exc:
                    return BatchOutcome(reading=reading, error=exc)
                return BatchOutcome(reading=reading, result=result)

        results = await asyncio.gather(
            *(run(reading) for reading in batch), return_exceptions=True
        )

        outcomes: List[BatchOutcome] = []
        for reading, result in zip(batch, results):
            if isinstance(result, BatchOutcome):
                outcomes.append(result)
                continue
            if not isinstance(result, Exception):
                raise result
            logger.error(
                "Unexpected error processing sensor reading",
                exc_info=result,
                extra={
                    "correlation_id": reading.correlation_id,
                    "sensor_client_id": reading.sensor_client_id,
                    "field_id": reading.field_id,
                    "reason": f"{type(result).__name__}: {result}",
                },
            )
            outcomes.append(BatchOutcome(reading=reading, error=result))
        return outcomes

    async def shutdown(self) -> None:
        """Release the store connection during application shutdown."""
        await self.store.close()


@lru_cache
def build_default_processor(concurrency: Optional[int] = None) -> ReadingProcessor:
    """Factory that wires the processor with the default engine and store."""
    settings = get_settings()
    return ReadingProcessor(
        engine=build_default_engine(),
        concurrency=concurrency or settings.evaluation_concurrency,
        sensor_measurement=settings.sensor_measurement,
    )
