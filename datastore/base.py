"""Contract shared by time-series store implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable

from datastore.query import TimeWindow
from models.records import Scalar


@dataclass(frozen=True)
class QueryRow:
    """One result row: an optional timestamp plus column values.

    Aggregated windows yield one row per field with ``_field`` and ``_value``;
    pivoted windows yield one row per instant with a column per field.
    """

    time: Optional[datetime]
    values: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


@runtime_checkable
class TimeSeriesStore(Protocol):
    async def query(self, window: TimeWindow) -> Sequence[QueryRow]:
        ...

    async def write_point(
        self,
        measurement: str,
        tags: Mapping[str, str],
        fields: Mapping[str, Scalar],
        timestamp_ns: int,
    ) -> None:
        ...

    async def close(self) -> None:
        ...
