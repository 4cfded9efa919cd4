"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.schemas import (
    AlertResponse,
    BatchItemResponse,
    BatchResponse,
    RuleResultResponse,
    SensorReadingPayload,
    format_reading_time,
)
from datastore.errors import StoreError
from logging_config import current_correlation_id
from models.records import RuleResult
from services.alerts import recent_alerts
from services.errors import EvaluationFailed, MalformedReading
from services.processor import ReadingProcessor, build_default_processor
from settings import get_settings

router = APIRouter()


def get_processor() -> ReadingProcessor:
    return build_default_processor()


async def _process(
    processor: ReadingProcessor, payload: SensorReadingPayload, ingest: bool
) -> RuleResult:
    try:
        return await processor.process(
            payload.to_reading(correlation_id=current_correlation_id()), ingest=ingest
        )
    except MalformedReading as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except (EvaluationFailed, StoreError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc


@router.post(
    "/readings",
    response_model=RuleResultResponse,
    summary="Store a sensor reading and evaluate the alert rules against it.",
)
async def submit_reading(
    payload: SensorReadingPayload,
    processor: ReadingProcessor = Depends(get_processor),
) -> RuleResultResponse:
    result = await _process(processor, payload, ingest=True)
    return RuleResultResponse.from_result(result)


@router.post(
    "/readings/evaluate",
    response_model=RuleResultResponse,
    summary="Evaluate the alert rules for a reading without storing it.",
)
async def evaluate_reading(
    payload: SensorReadingPayload,
    processor: ReadingProcessor = Depends(get_processor),
) -> RuleResultResponse:
    result = await _process(processor, payload, ingest=False)
    return RuleResultResponse.from_result(result)


@router.post(
    "/readings/batch",
    response_model=BatchResponse,
    summary="Store and evaluate several independent readings concurrently.",
)
async def submit_batch(
    payloads: List[SensorReadingPayload] = Body(...),
    processor: ReadingProcessor = Depends(get_processor),
) -> BatchResponse:
    correlation_id = current_correlation_id()
    outcomes = await processor.process_batch(
        payload.to_reading(correlation_id=correlation_id) for payload in payloads
    )
    items = [
        BatchItemResponse(
            sensor_client_id=outcome.reading.sensor_client_id,
            timestamp=format_reading_time(outcome.reading),
            result=RuleResultResponse.from_result(outcome.result) if outcome.result else None,
            error=f"{type(outcome.error).__name__}: {outcome.error}" if outcome.error else None,
        )
        for outcome in outcomes
    ]
    return BatchResponse(items=items)


@router.get(
    "/alerts",
    response_model=List[AlertResponse],
    summary="List alerts written during the last hours.",
)
async def list_alerts(
    hours: int = Query(24, ge=1, le=24 * 90),
    sensor_client_id: Optional[str] = Query(None),
    processor: ReadingProcessor = Depends(get_processor),
) -> List[AlertResponse]:
    try:
        alerts = await recent_alerts(
            processor.store,
            bucket=get_settings().bucket,
            hours=hours,
            sensor_client_id=sensor_client_id,
        )
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc
    return [
        AlertResponse(
            sensor_client_id=alert.sensor_client_id,
            field_id=alert.field_id,
            message=alert.message,
            time=alert.time,
        )
        for alert in alerts
    ]


@router.get("/metrics", summary="Prometheus metrics.", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
