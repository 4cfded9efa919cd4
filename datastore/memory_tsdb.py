from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from statistics import fmean
from threading import Lock
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from datastore.base import QueryRow
from datastore.errors import WriteRejected
from datastore.query import Aggregation, TimeWindow, parse_scalar
from models.records import Scalar
from models.timestamps import datetime_to_ns, ns_to_datetime

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...], int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _duration_ns(value: timedelta) -> int:
    return (value // timedelta(microseconds=1)) * 1_000


@dataclass(frozen=True)
class StoredPoint:
    measurement: str
    tags: Dict[str, str]
    fields: Dict[str, Scalar]
    timestamp_ns: int

    def series_key(self) -> SeriesKey:
        return (self.measurement, tuple(sorted(self.tags.items())), self.timestamp_ns)

    def to_json(self) -> dict:
        return {
            "measurement": self.measurement,
            "tags": self.tags,
            "fields": self.fields,
            "timestamp_ns": self.timestamp_ns,
        }

    @classmethod
    def from_json(cls, payload: Mapping) -> "StoredPoint":
        return cls(
            measurement=str(payload["measurement"]),
            tags={str(k): str(v) for k, v in dict(payload.get("tags") or {}).items()},
            fields=dict(payload.get("fields") or {}),
            timestamp_ns=int(payload["timestamp_ns"]),
        )


class InMemoryTimeSeriesStore:
    """Time-series store kept in process memory, optionally mirrored to a JSON-lines log.

    Query semantics follow InfluxDB: the range is ``[now + start, now + stop)``,
    aggregates reduce each selected field across all matching series, and
    pivoted windows join fields that share a timestamp within one series.
    Writing a point whose measurement, tag set and timestamp already exist
    merges its fields into the stored point, the later value winning, so a
    redelivered reading is stored once.

    Each write appends one line to the log; loading replays the lines in order.
    """

    def __init__(
        self,
        name: str,
        persistence_path: Optional[Path] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._clock = clock
        self._points: Dict[SeriesKey, StoredPoint] = {}
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    async def query(self, window: TimeWindow) -> Sequence[QueryRow]:
        now_ns = datetime_to_ns(self._clock())
        start_ns = now_ns + _duration_ns(window.start)
        stop_ns = now_ns + _duration_ns(window.stop)
        tag_filters = window.tag_filters

        with self._lock:
            matching = [
                point
                for point in self._points.values()
                if point.measurement == window.measurement
                and start_ns <= point.timestamp_ns < stop_ns
                and all(point.tags.get(key) == value for key, value in tag_filters.items())
            ]

        matching.sort(key=lambda point: point.timestamp_ns)
        if window.aggregation is not None:
            return self._aggregate(matching, window)
        if window.pivot:
            return self._pivot(matching, window)

        rows: List[QueryRow] = []
        for point in matching:
            for field_name in window.fields:
                if field_name not in point.fields:
                    continue
                rows.append(
                    QueryRow(
                        time=ns_to_datetime(point.timestamp_ns),
                        values={
                            **point.tags,
                            "_field": field_name,
                            "_value": point.fields[field_name],
                        },
                    )
                )
        return rows

    async def write_point(
        self,
        measurement: str,
        tags: Mapping[str, str],
        fields: Mapping[str, Scalar],
        timestamp_ns: int,
    ) -> None:
        if not measurement:
            raise WriteRejected("Point measurement must not be empty.")
        if not fields:
            raise WriteRejected("Point must carry at least one field.")
        point = StoredPoint(
            measurement=measurement,
            tags={str(key): str(value) for key, value in tags.items()},
            fields=dict(fields),
            timestamp_ns=int(timestamp_ns),
        )
        with self._lock:
            self._upsert(point)
            self._append_to_log(point)

    async def close(self) -> None:
        return None

    def scan(self, measurement: Optional[str] = None) -> list[StoredPoint]:
        """Return every stored point, optionally restricted to one measurement."""

        with self._lock:
            return [
                point
                for point in self._points.values()
                if measurement is None or point.measurement == measurement
            ]

    @staticmethod
    def _aggregate(points: Sequence[StoredPoint], window: TimeWindow) -> List[QueryRow]:
        rows: List[QueryRow] = []
        for field_name in window.fields:
            samples: List[Tuple[int, float]] = []
            for point in points:
                value = parse_scalar(point.fields.get(field_name))
                if value is not None:
                    samples.append((point.timestamp_ns, value))
            if not samples:
                continue

            if window.aggregation is Aggregation.mean:
                time = None
                value = fmean(sample for _, sample in samples)
            else:
                pick = min if window.aggregation is Aggregation.min else max
                timestamp_ns, value = pick(samples, key=lambda sample: sample[1])
                time = ns_to_datetime(timestamp_ns)

            rows.append(QueryRow(time=time, values={"_field": field_name, "_value": value}))
        return rows

    @staticmethod
    def _pivot(points: Sequence[StoredPoint], window: TimeWindow) -> List[QueryRow]:
        grouped: Dict[Tuple[int, Tuple[Tuple[str, str], ...]], Dict[str, Scalar]] = {}
        for point in points:
            series = tuple(sorted(point.tags.items()))
            columns = grouped.setdefault((point.timestamp_ns, series), dict(series))
            for field_name in window.fields:
                if field_name in point.fields:
                    columns[field_name] = point.fields[field_name]

        rows: List[QueryRow] = []
        for (timestamp_ns, _series), columns in grouped.items():
            if not any(field_name in columns for field_name in window.fields):
                continue
            if not all(comparison.matches(columns) for comparison in window.where):
                continue
            rows.append(QueryRow(time=ns_to_datetime(timestamp_ns), values=columns))
        return rows

    def _upsert(self, point: StoredPoint) -> None:
        key = point.series_key()
        existing = self._points.get(key)
        if existing is not None:
            point = replace(point, fields={**existing.fields, **point.fields})
        self._points[key] = point

    def _append_to_log(self, point: StoredPoint) -> None:
        if not self.persistence_path:
            return
        with self.persistence_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(point.to_json(), sort_keys=True) + "\n")

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            lines = self.persistence_path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError):
            logger.warning(
                "Ignoring unreadable store log",
                extra={"reason": str(self.persistence_path)},
            )
            return

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                point = StoredPoint.from_json(json.loads(line))
            except (KeyError, TypeError, ValueError):
                logger.warning(
                    "Skipping unreadable store log entry",
                    extra={"reason": f"{self.persistence_path}:{line_number}"},
                )
                continue
            self._upsert(point)
