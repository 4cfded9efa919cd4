"""Windowed query descriptors and their parameterized Flux rendering.

A :class:`TimeWindow` describes *what* a rule wants to read: a relative time
range, a measurement, tag filters, the fields of interest and how to reduce
them. Stores interpret the descriptor directly (the in-memory store) or
render it with :meth:`TimeWindow.to_flux` (InfluxDB). Rendering never places a
caller-supplied value into the query text; every such value travels in the
``params`` mapping and is referenced as ``params.<name>``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Aggregation(str, Enum):
    min = "min"
    max = "max"
    mean = "mean"


class Operator(str, Enum):
    gt = ">"
    ge = ">="
    lt = "<"
    le = "<="
    eq = "=="

    def apply(self, left: float, right: float) -> bool:
        if self is Operator.gt:
            return left > right
        if self is Operator.ge:
            return left >= right
        if self is Operator.lt:
            return left < right
        if self is Operator.le:
            return left <= right
        return left == right


def parse_scalar(raw: Any) -> Optional[float]:
    """Parse an untyped store scalar, returning ``None`` when it is not a usable number."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        candidate = raw.strip().replace(",", ".")
        if not candidate:
            return None
        try:
            value = float(candidate)
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


@dataclass(frozen=True)
class Comparison:
    """Row predicate ``<field> <op> <value>`` applied after pivoting."""

    field: str
    op: Operator
    value: float

    def matches(self, values: Mapping[str, Any]) -> bool:
        candidate = parse_scalar(values.get(self.field))
        if candidate is None:
            return False
        return self.op.apply(candidate, self.value)


@dataclass(frozen=True)
class FluxQuery:
    text: str
    params: Dict[str, Any]


@dataclass(frozen=True)
class TimeWindow:
    bucket: str
    measurement: str
    start: timedelta
    fields: Tuple[str, ...]
    stop: timedelta = timedelta(0)
    tags: Tuple[Tuple[str, str], ...] = ()
    aggregation: Optional[Aggregation] = None
    pivot: bool = False
    where: Tuple[Comparison, ...] = ()

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("A time window needs at least one field.")
        if self.start >= self.stop:
            raise ValueError("Window start must precede its stop.")
        if self.aggregation is not None and self.pivot:
            raise ValueError("Aggregated windows cannot also be pivoted.")
        if self.where and not self.pivot:
            raise ValueError("Row predicates require a pivoted window.")
        names = [*self.fields, *(key for key, _ in self.tags)]
        for name in names:
            if not _IDENTIFIER_RE.match(name):
                raise ValueError(f"Invalid identifier {name!r} in time window.")
        for comparison in self.where:
            if comparison.field not in self.fields:
                raise ValueError(
                    f"Predicate field {comparison.field!r} is not selected by the window."
                )

    @classmethod
    def last(
        cls,
        duration: timedelta,
        *,
        bucket: str,
        measurement: str,
        fields: Tuple[str, ...],
        tags: Optional[Mapping[str, str]] = None,
        **options: Any,
    ) -> "TimeWindow":
        """Window covering the ``duration`` that ends now."""
        return cls(
            bucket=bucket,
            measurement=measurement,
            start=-duration,
            fields=tuple(fields),
            tags=tuple((tags or {}).items()),
            **options,
        )

    @property
    def tag_filters(self) -> Dict[str, str]:
        return dict(self.tags)

    def to_flux(self) -> FluxQuery:
        params: Dict[str, Any] = {
            "bucket": self.bucket,
            "measurement": self.measurement,
            "start": self.start,
            "stop": self.stop,
        }
        lines = [
            "from(bucket: params.bucket)",
            "  |> range(start: params.start, stop: params.stop)",
            "  |> filter(fn: (r) => r._measurement == params.measurement)",
        ]

        for index, (key, value) in enumerate(self.tags):
            name = f"tag{index}"
            params[name] = value
            lines.append(f'  |> filter(fn: (r) => r["{key}"] == params.{name})')

        field_terms = []
        for index, field_name in enumerate(self.fields):
            name = f"field{index}"
            params[name] = field_name
            field_terms.append(f"r._field == params.{name}")
        lines.append(f"  |> filter(fn: (r) => {' or '.join(field_terms)})")

        if self.aggregation is not None:
            lines.append('  |> group(columns: ["_field"])')
            lines.append(f"  |> {self.aggregation.value}()")

        if self.pivot:
            lines.append(
                '  |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")'
            )

        if self.where:
            terms = []
            for index, comparison in enumerate(self.where):
                name = f"where{index}"
                params[name] = float(comparison.value)
                terms.append(f'r["{comparison.field}"] {comparison.op.value} params.{name}')
            lines.append(f"  |> filter(fn: (r) => {' and '.join(terms)})")

        return FluxQuery(text="\n".join(lines), params=params)
