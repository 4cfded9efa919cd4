from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from app.api import router
from datastore.factory import build_default_store
from logging_config import configure_logging, correlation_scope
from services.engine import build_default_engine
from services.processor import build_default_processor
from settings import get_settings

CORRELATION_HEADER = "X-Correlation-ID"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    processor = build_default_processor()
    settings = get_settings()
    logger.info(
        "Alert service ready",
        extra={"operation": "startup", "measurement": settings.sensor_measurement},
    )
    try:
        yield
    finally:
        await processor.shutdown()
        build_default_processor.cache_clear()
        build_default_engine.cache_clear()
        build_default_store.cache_clear()


async def correlate_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Run the request under the caller's correlation id, minting one if absent."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
    with correlation_scope(correlation_id):
        response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Agro Alerts",
        description="Evaluates agronomic risk rules against incoming sensor telemetry.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.middleware("http")(correlate_request)
    app.include_router(router)
    return app

app = create_app()
