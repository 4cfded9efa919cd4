"""Tests for window descriptors and their Flux rendering."""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from datastore.query import (
    Aggregation,
    Comparison,
    Operator,
    TimeWindow,
    parse_scalar,
)


def test_flux_passes_identifiers_as_parameters() -> None:
    hostile = 'abc") |> drop() //'
    window = TimeWindow.last(
        timedelta(hours=24),
        bucket="main-bucket",
        measurement="agro_sensors",
        fields=("soil_moisture_percent",),
        tags={"field_id": hostile},
        aggregation=Aggregation.min,
    )

    flux = window.to_flux()

    assert hostile not in flux.text
    assert "main-bucket" not in flux.text
    assert flux.params["tag0"] == hostile
    assert flux.params["bucket"] == "main-bucket"
    assert flux.params["start"] == timedelta(hours=-24)
    assert flux.params["stop"] == timedelta(0)
    assert 'r["field_id"] == params.tag0' in flux.text
    assert flux.text.rstrip().endswith("min()")


def test_flux_pivot_with_row_predicates() -> None:
    window = TimeWindow.last(
        timedelta(hours=8),
        bucket="b",
        measurement="agro_sensors",
        fields=("soil_ph", "air_temperature_c"),
        tags={"sensor_client_id": "s-1"},
        pivot=True,
        where=(
            Comparison("soil_ph", Operator.gt, 8),
            Comparison("air_temperature_c", Operator.ge, 40),
        ),
    )

    flux = window.to_flux()

    assert "pivot(rowKey: [\"_time\"]" in flux.text
    assert 'r["soil_ph"] > params.where0 and r["air_temperature_c"] >= params.where1' in flux.text
    assert flux.params["where0"] == 8.0
    assert flux.params["where1"] == 40.0
    assert "r._field == params.field0 or r._field == params.field1" in flux.text


def test_forecast_window_runs_forward() -> None:
    window = TimeWindow(
        bucket="b",
        measurement="weather_forecast",
        start=timedelta(0),
        stop=timedelta(days=3),
        fields=("rain_probability",),
        tags=(("city", "sao_paulo"),),
        aggregation=Aggregation.max,
    )

    flux = window.to_flux()

    assert flux.params["start"] == timedelta(0)
    assert flux.params["stop"] == timedelta(days=3)
    assert "max()" in flux.text


@pytest.mark.parametrize(
    "kwargs",
    [
        {"fields": ()},
        {"fields": ("bad-name",)},
        {"fields": ("x",), "tags": (("bad key", "v"),)},
        {"fields": ("x",), "start": timedelta(0)},
        {"fields": ("x",), "aggregation": Aggregation.min, "pivot": True},
        {"fields": ("x",), "where": (Comparison("x", Operator.gt, 1),)},
        {"fields": ("x",), "pivot": True, "where": (Comparison("y", Operator.gt, 1),)},
    ],
)
def test_invalid_windows_are_rejected(kwargs) -> None:
    params = {"bucket": "b", "measurement": "m", "start": timedelta(hours=-1)}
    params.update(kwargs)
    with pytest.raises(ValueError):
        TimeWindow(**params)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (29.999, 29.999),
        (30, 30.0),
        ("69", 69.0),
        (" 70,5 ", 70.5),
        ("n/a", None),
        ("", None),
        (None, None),
        (True, None),
        (math.nan, None),
        ("inf", None),
        ([1], None),
    ],
)
def test_parse_scalar_fails_closed(raw, expected) -> None:
    assert parse_scalar(raw) == expected


def test_comparison_with_missing_column_does_not_match() -> None:
    comparison = Comparison("soil_ph", Operator.lt, 5)
    assert comparison.matches({"soil_ph": 4.9}) is True
    assert comparison.matches({"soil_ph": 5.0}) is False
    assert comparison.matches({}) is False
    assert comparison.matches({"soil_ph": "acidic"}) is False
