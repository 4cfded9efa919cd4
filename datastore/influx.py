"""InfluxDB 2.x implementation of the time-series store contract."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence

import aiohttp
from influxdb_client import Point, WritePrecision
from influxdb_client.client.influxdb_client_async import InfluxDBClientAsync
from influxdb_client.rest import ApiException

from datastore.base import QueryRow
from datastore.errors import QueryRejected, StoreUnavailable, WriteRejected
from datastore.query import TimeWindow
from models.records import Scalar

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)
_DROPPED_COLUMNS = {"result", "table", "_time"}


class InfluxDBTimeSeriesStore:
    """Reads windows through parameterized Flux and writes single points.

    The async client is created on first use so that its HTTP session binds to
    the running event loop.
    """

    def __init__(
        self,
        url: str,
        token: str,
        org: str,
        bucket: str,
        timeout_ms: int = 10_000,
        client: Optional[Any] = None,
    ) -> None:
        self.url = url
        self.org = org
        self.bucket = bucket
        self._token = token
        self._timeout_ms = timeout_ms
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = InfluxDBClientAsync(
                url=self.url,
                token=self._token,
                org=self.org,
                timeout=self._timeout_ms,
            )
        return self._client

    async def query(self, window: TimeWindow) -> Sequence[QueryRow]:
        flux = window.to_flux()
        try:
            tables = await self._get_client().query_api().query(
                flux.text, org=self.org, params=flux.params
            )
        except ApiException as exc:
            logger.error(
                "InfluxDB rejected query",
                extra={"operation": "query", "measurement": window.measurement, "reason": exc.reason},
            )
            if exc.status is not None and 400 <= exc.status < 500:
                raise QueryRejected(f"Query rejected with status {exc.status}: {exc.reason}") from exc
            raise StoreUnavailable(f"InfluxDB query failed with status {exc.status}.") from exc
        except _TRANSPORT_ERRORS as exc:
            raise StoreUnavailable(f"InfluxDB at {self.url} is unreachable: {exc}") from exc

        rows: List[QueryRow] = []
        for table in tables:
            for record in table.records:
                values = {
                    key: value
                    for key, value in record.values.items()
                    if key not in _DROPPED_COLUMNS
                }
                rows.append(QueryRow(time=record.values.get("_time"), values=values))
        return rows

    async def write_point(
        self,
        measurement: str,
        tags: Mapping[str, str],
        fields: Mapping[str, Scalar],
        timestamp_ns: int,
    ) -> None:
        point = Point(measurement)
        for key, value in tags.items():
            point = point.tag(key, value)
        for key, value in fields.items():
            point = point.field(key, value)
        point = point.time(timestamp_ns, WritePrecision.NS)

        try:
            await self._get_client().write_api().write(
                bucket=self.bucket, org=self.org, record=point
            )
        except ApiException as exc:
            if exc.status is not None and 400 <= exc.status < 500:
                raise WriteRejected(f"Write rejected with status {exc.status}: {exc.reason}") from exc
            raise StoreUnavailable(f"InfluxDB write failed with status {exc.status}.") from exc
        except _TRANSPORT_ERRORS as exc:
            raise StoreUnavailable(f"InfluxDB at {self.url} is unreachable: {exc}") from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
